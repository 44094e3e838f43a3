"""
Tests for item data normalization.
"""

from ansybl.common_tools.normalizers import ItemDataNormalizer


class TestItemDataNormalizer:
    """Test ItemDataNormalizer functionality."""

    def test_normalize_text_field(self):
        assert ItemDataNormalizer.normalize_text_field("  Title \n") == "Title"
        assert ItemDataNormalizer.normalize_text_field(None) is None

    def test_normalize_tags_lowercases_and_dedupes(self):
        tags = ["Python", " python ", "web-dev", "WEB-DEV", "data_science"]
        assert ItemDataNormalizer.normalize_tags(tags) == ["python", "web-dev", "data_science"]

    def test_normalize_tags_drops_invalid(self):
        tags = ["ok", "has space", "emoji🙂", "", 42, None, "fine-1"]
        assert ItemDataNormalizer.normalize_tags(tags) == ["ok", "fine-1"]

    def test_normalize_tags_caps_count(self):
        tags = [f"tag{index}" for index in range(30)]
        normalized = ItemDataNormalizer.normalize_tags(tags)
        assert len(normalized) == 20
        assert normalized[-1] == "tag19"

    def test_normalize_tags_empty(self):
        assert ItemDataNormalizer.normalize_tags(None) == []
        assert ItemDataNormalizer.normalize_tags([]) == []

    def test_normalize_attachment(self):
        attachment = {
            "url": " https://example.com/a.png ",
            "mime_type": "Image/PNG",
            "title": None,
            "_blurhash": "LKO2",
        }
        assert ItemDataNormalizer.normalize_attachment(attachment) == {
            "url": "https://example.com/a.png",
            "mime_type": "image/png",
            "_blurhash": "LKO2",
        }

    def test_normalize_attachments_keeps_order(self):
        attachments = [
            {"url": "https://example.com/1", "mime_type": "text/plain"},
            {"url": "https://example.com/2", "mime_type": "text/plain"},
        ]
        urls = [attachment["url"] for attachment in ItemDataNormalizer.normalize_attachments(attachments)]
        assert urls == ["https://example.com/1", "https://example.com/2"]

    def test_normalize_interactions_fills_counts(self):
        assert ItemDataNormalizer.normalize_interactions({"likes_count": 4, "replies_url": None}) == {
            "likes_count": 4,
            "replies_count": 0,
            "shares_count": 0,
        }
        assert ItemDataNormalizer.normalize_interactions(None) is None
