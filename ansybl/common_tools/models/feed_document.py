"""
Immutable data models for Ansybl feed documents.

FeedDocument, ContentItem and their parts are frozen pydantic models.
Extension fields (keys starting with `_`) are collected into an
`extensions` mapping on input and written back at the same level on
output, so `to_dict()` round-trips the wire form.
"""

from typing import Any, Dict, List, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    SerializerFunctionWrapHandler,
    field_validator,
    model_serializer,
    model_validator,
)

MAX_TAGS = 20

Number = Union[int, float]


class AnsyblModel(BaseModel):
    """Base for wire-level models carrying `_` extension fields."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    extensions: Dict[str, Any] = Field(default_factory=dict, exclude=True)

    @model_validator(mode="before")
    @classmethod
    def collect_extensions(cls, data: Any) -> Any:
        """Move `_`-prefixed keys into `extensions`."""
        if not isinstance(data, dict):
            return data

        extensions = {
            key: value for key, value in data.items()
            if isinstance(key, str) and key.startswith("_")
        }
        if not extensions:
            return data

        data = {key: value for key, value in data.items() if key not in extensions}
        data["extensions"] = {**data.get("extensions", {}), **extensions}
        return data

    @model_serializer(mode="wrap")
    def serialize_with_extensions(self, handler: SerializerFunctionWrapHandler) -> Dict[str, Any]:
        data = handler(self)
        data.update(self.extensions)
        return data

    def to_dict(self) -> Dict[str, Any]:
        """Plain JSON-ready dictionary without unset optional fields."""
        return self.model_dump(exclude_none=True)


class Author(AnsyblModel):
    name: str
    public_key: str
    url: Optional[str] = None
    avatar: Optional[str] = None

    @field_validator("public_key")
    @classmethod
    def validate_envelope(cls, v: str) -> str:
        if not v.startswith("ed25519:"):
            raise ValueError("public_key must use the ed25519:<base64> envelope")
        return v


class Attachment(AnsyblModel):
    url: str
    mime_type: str
    title: Optional[str] = None
    size_in_bytes: Optional[int] = None
    width: Optional[int] = None
    height: Optional[int] = None
    duration_in_seconds: Optional[Number] = None
    alt_text: Optional[str] = None


class Interactions(AnsyblModel):
    replies_count: int = 0
    likes_count: int = 0
    shares_count: int = 0
    replies_url: Optional[str] = None
    likes_url: Optional[str] = None
    shares_url: Optional[str] = None


class ContentItem(AnsyblModel):
    """A single signed entry in a feed."""

    id: str
    url: str
    uuid: Optional[str] = None
    title: Optional[str] = None
    summary: Optional[str] = None
    content_text: Optional[str] = None
    content_html: Optional[str] = None
    content_markdown: Optional[str] = None
    date_published: str
    date_modified: Optional[str] = None
    tags: Optional[List[str]] = None
    in_reply_to: Optional[str] = None
    author: Optional[Author] = None
    attachments: Optional[List[Attachment]] = None
    interactions: Optional[Interactions] = None
    signature: Optional[str] = None

    @field_validator("tags")
    @classmethod
    def validate_tag_count(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        if v is not None and len(v) > MAX_TAGS:
            raise ValueError(f"At most {MAX_TAGS} tags are allowed, got {len(v)}")
        return v

    @property
    def has_content(self) -> bool:
        return any((self.content_text, self.content_html, self.content_markdown, self.title))


class FeedDocument(AnsyblModel):
    """A feed: metadata, one author and an ordered list of items."""

    version: str
    title: str
    home_page_url: str
    feed_url: str
    description: Optional[str] = None
    icon: Optional[str] = None
    language: Optional[str] = None
    author: Author
    items: List[ContentItem] = Field(default_factory=list)
    signature: Optional[str] = None

    def with_item(self, item: ContentItem) -> "FeedDocument":
        """New feed with item appended; any feed signature is dropped."""
        return self.model_copy(update={"items": [*self.items, item], "signature": None})

    def with_signature(self, signature: Optional[str]) -> "FeedDocument":
        return self.model_copy(update={"signature": signature})

    def get_item(self, item_id: str) -> Optional[ContentItem]:
        for item in self.items:
            if item.id == item_id:
                return item
        return None
