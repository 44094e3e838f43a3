from .document_builder import DocumentBuilder

__all__ = ["DocumentBuilder"]
