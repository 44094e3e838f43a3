import re
from typing import Any, Dict, Iterable, List, Mapping, Optional

from .models import MAX_TAGS

TAG_PATTERN = re.compile(r"^[a-z0-9_-]+$")

ATTACHMENT_FIELDS = (
    "url", "mime_type", "title", "size_in_bytes", "width", "height",
    "duration_in_seconds", "alt_text",
)

INTERACTION_COUNTS = ("replies_count", "likes_count", "shares_count")


class ItemDataNormalizer:
    """Normalizes caller-supplied item data before it is validated and signed."""

    @staticmethod
    def normalize_text_field(text: Optional[str]) -> Optional[str]:
        if text is None:
            return None
        return text.strip()

    @staticmethod
    def normalize_tags(tags: Optional[Iterable[Any]]) -> List[str]:
        """
        Lowercase and strip tags, drop ones with characters outside
        [a-z0-9_-], remove duplicates keeping first occurrence, cap at MAX_TAGS.
        """
        if not tags:
            return []

        normalized: List[str] = []
        for tag in tags:
            if not isinstance(tag, str):
                continue
            tag = tag.strip().lower()
            if TAG_PATTERN.match(tag) and tag not in normalized:
                normalized.append(tag)
            if len(normalized) == MAX_TAGS:
                break
        return normalized

    @staticmethod
    def normalize_attachment(attachment: Mapping[str, Any]) -> Dict[str, Any]:
        """
        Drop unset fields, trim the URL and lowercase the MIME type.

        Unknown fields are kept so validation can report them.
        """
        result = {key: value for key, value in attachment.items() if value is not None}
        if isinstance(result.get("url"), str):
            result["url"] = result["url"].strip()
        if isinstance(result.get("mime_type"), str):
            result["mime_type"] = result["mime_type"].strip().lower()
        return result

    @classmethod
    def normalize_attachments(cls, attachments: Optional[Iterable[Any]]) -> List[Dict[str, Any]]:
        if not attachments:
            return []
        return [
            cls.normalize_attachment(attachment) if isinstance(attachment, Mapping) else attachment
            for attachment in attachments
        ]

    @staticmethod
    def normalize_interactions(interactions: Optional[Mapping[str, Any]]) -> Optional[Dict[str, Any]]:
        """Fill missing counters with 0 and drop unset URLs."""
        if interactions is None:
            return None
        if not isinstance(interactions, Mapping):
            return interactions

        result = {key: value for key, value in interactions.items() if value is not None}
        for counter in INTERACTION_COUNTS:
            result.setdefault(counter, 0)
        return result
