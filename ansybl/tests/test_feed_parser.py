"""
Tests for FeedParser: full parses, signature verification levels,
partial parses and item queries.
"""

import copy
import json

import pytest

from ansybl.common_tools.diagnostics import ErrorCode
from ansybl.parser import ItemFilters, ParseOptions


def unsigned_feed_with_signed_items(feed):
    feed = copy.deepcopy(feed)
    del feed["signature"]
    return feed


class TestParseOptions:

    def test_defaults(self):
        options = ParseOptions()
        assert options.verify_signatures is False
        assert options.preserve_extensions is True
        assert options.signature_level == "all"

    @pytest.mark.parametrize("kwargs", [{"signature_level": "some"}, {"content_filter": "pdf"}])
    def test_rejects_unknown_values(self, kwargs):
        with pytest.raises(ValueError):
            ParseOptions(**kwargs)


class TestParse:

    def test_valid_feed(self, parser, signed_feed):
        result = parser.parse(signed_feed)

        assert result.success
        assert result.errors == []
        assert result.signatures is None
        assert result.performance["parse_type"] == "full"

    def test_accepts_json_text(self, parser, signed_feed):
        assert parser.parse(json.dumps(signed_feed)).success

    def test_invalid_json(self, parser):
        result = parser.parse("{nope")
        assert not result.success
        assert result.error_codes == ["INVALID_JSON"]

    def test_deeply_nested_input_reported_not_raised(self, parser):
        document = "[" * 100000 + "]" * 100000

        assert parser.parse(document).error_codes == ["INVALID_JSON"]
        assert parser.parse_metadata_only(document).error_codes == ["INVALID_JSON"]
        assert parser.parse_content_only(document).error_codes == ["INVALID_JSON"]

    def test_invalid_document(self, parser, signed_feed):
        del signed_feed["title"]
        result = parser.parse(signed_feed)

        assert not result.success
        assert result.feed is None
        assert result.error_codes == ["MISSING_REQUIRED_FIELD"]

    def test_items_sorted_newest_first(self, parser, signed_feed):
        feed = parser.parse(signed_feed).feed
        assert [item["date_published"] for item in feed["items"]] == [
            "2025-03-01T08:00:00Z",
            "2025-02-01T08:00:00Z",
            "2025-01-01T08:00:00Z",
        ]

    def test_sort_is_stable(self, parser, minimal_feed):
        first = minimal_feed["items"][0]
        minimal_feed["items"] = [{**first, "id": f"https://example.com/same/{index}"} for index in range(4)]

        feed = parser.parse(minimal_feed).feed
        assert [item["id"] for item in feed["items"]] == [f"https://example.com/same/{index}" for index in range(4)]

    def test_input_not_modified(self, parser, signed_feed):
        snapshot = copy.deepcopy(signed_feed)
        result = parser.parse(signed_feed, ParseOptions(preserve_extensions=False))

        result.feed["items"][0]["title"] = "changed"
        assert signed_feed == snapshot

    def test_extensions_stripped_recursively(self, parser, minimal_feed):
        minimal_feed["_source"] = "import"
        minimal_feed["author"]["_pronouns"] = "she/her"
        minimal_feed["items"][0]["_score"] = 3

        kept = parser.parse(minimal_feed).feed
        stripped = parser.parse(minimal_feed, ParseOptions(preserve_extensions=False)).feed

        assert kept["_source"] == "import"
        assert "_source" not in stripped
        assert "_pronouns" not in stripped["author"]
        assert "_score" not in stripped["items"][0]

    def test_content_filter_option(self, parser, signed_feed):
        feed = parser.parse(signed_feed, ParseOptions(content_filter="markdown")).feed
        for item in feed["items"]:
            assert "content_text" not in item
            assert "content_html" not in item
        assert feed["items"][0]["content_markdown"] == "# H"


class TestSignatureVerification:

    def test_all_valid(self, parser, signed_feed):
        result = parser.parse(signed_feed, ParseOptions(verify_signatures=True))
        report = result.signatures

        assert result.success
        assert report.all_valid
        assert report.feed_signature_valid is True
        assert report.summary.total_items == 3
        assert report.summary.valid_items == 3
        assert all(item.signature_present for item in report.item_signatures)

    def test_items_only_ignores_missing_feed_signature(self, parser, signed_feed):
        feed = unsigned_feed_with_signed_items(signed_feed)
        report = parser.parse(feed, ParseOptions(verify_signatures=True, signature_level="items-only")).signatures

        assert report.all_valid
        assert report.feed_signature_valid is None
        assert report.verification_level == "items-only"

    def test_feed_only_skips_items(self, parser, signed_feed):
        report = parser.verify_signatures(signed_feed, "feed-only")

        assert report.all_valid
        assert report.item_signatures == []
        assert report.summary.total_items == 0

    def test_missing_feed_signature_at_all_level(self, parser, signed_feed):
        report = parser.verify_signatures(unsigned_feed_with_signed_items(signed_feed), "all")

        assert not report.all_valid
        assert report.feed_signature_valid is False

    def test_tampered_item(self, parser, signed_feed):
        signed_feed["items"][2]["title"] = "Forged"
        result = parser.parse(signed_feed, ParseOptions(verify_signatures=True))
        report = result.signatures

        assert result.success
        assert not report.all_valid
        assert report.feed_signature_valid is False
        assert report.summary.invalid_items == 1
        assert [error.code for error in report.errors] == [
            ErrorCode.INVALID_FEED_SIGNATURE,
            ErrorCode.INVALID_ITEM_SIGNATURE,
        ]
        assert report.errors[1].field == "items[2].signature"

    def test_missing_item_signature(self, parser, signed_feed):
        del signed_feed["items"][0]["signature"]
        report = parser.verify_signatures(signed_feed, "items-only")

        assert report.summary.missing_signatures == 1
        assert report.item_signatures[0].error == "Missing signature"
        assert report.errors[0].code == ErrorCode.MISSING_ITEM_SIGNATURE

    def test_item_author_key_preferred(self, builder, parser, feed_metadata, other_key_pair, key_pair):
        feed = builder.create_feed(feed_metadata)
        feed = builder.add_item(feed, {
            "id": "https://notes.example.com/guest",
            "url": "https://notes.example.com/guest",
            "title": "Guest post",
            "author": {"name": "Guest", "public_key": other_key_pair.public_key},
        }, other_key_pair.private_key)
        feed = builder.sign_feed(feed, key_pair.private_key)

        report = parser.verify_signatures(feed.to_dict())
        assert report.all_valid
        assert report.item_signatures[0].public_key_used == other_key_pair.public_key

    def test_strict_mode_fails_parse(self, parser, signed_feed):
        signed_feed["items"][0]["title"] = "Forged"
        result = parser.parse(signed_feed, ParseOptions(verify_signatures=True, strict_mode=True))

        assert not result.success
        assert result.feed is None
        assert result.errors[0].code == ErrorCode.SIGNATURE_VERIFICATION_FAILED
        assert result.errors[0].field == "signatures"
        assert result.signatures is not None

    def test_require_signatures(self, parser, signed_feed):
        feed = unsigned_feed_with_signed_items(signed_feed)
        del feed["items"][1]["signature"]
        result = parser.parse(feed, ParseOptions(require_signatures=True))

        assert not result.success
        assert [(error.code, error.field) for error in result.errors] == [
            (ErrorCode.MISSING_FEED_SIGNATURE, "signature"),
            (ErrorCode.MISSING_ITEM_SIGNATURE, "items[1].signature"),
        ]

    def test_require_signatures_respects_level(self, parser, signed_feed):
        feed = unsigned_feed_with_signed_items(signed_feed)
        assert parser.parse(feed, ParseOptions(require_signatures=True, signature_level="items-only")).success

    def test_unknown_level(self, parser, signed_feed):
        with pytest.raises(ValueError):
            parser.verify_signatures(signed_feed, "most")


class TestParseWithVerification:

    def test_strict_requires_signatures(self, parser, signed_feed):
        result = parser.parse_with_verification(unsigned_feed_with_signed_items(signed_feed), "strict")
        assert not result.success
        assert result.error_codes == ["MISSING_FEED_SIGNATURE"]

    def test_relaxed_reports_without_failing(self, parser, signed_feed):
        result = parser.parse_with_verification(unsigned_feed_with_signed_items(signed_feed), "relaxed")
        assert result.success
        assert result.signatures.feed_signature_valid is False

    def test_strict_accepts_signed_feed(self, parser, signed_feed):
        result = parser.parse_with_verification(signed_feed)
        assert result.success
        assert result.signatures.all_valid

    def test_unknown_mode(self, parser, signed_feed):
        with pytest.raises(ValueError):
            parser.parse_with_verification(signed_feed, "paranoid")


class TestPartialParses:

    def test_metadata_only(self, parser, signed_feed):
        signed_feed["_generator"] = "notes"
        result = parser.parse_metadata_only(signed_feed)
        metadata = result.metadata

        assert result.success
        assert result.feed is None
        assert metadata["title"] == "Field Notes"
        assert metadata["item_count"] == 3
        assert metadata["has_signature"] is True
        assert metadata["extension_fields"] == [{"key": "_generator", "value": "notes"}]
        assert metadata["content_types"] == ["mixed", "text"]
        assert metadata["date_range"]["earliest"].startswith("2025-01-01")
        assert metadata["date_range"]["latest"].startswith("2025-03-01")
        assert metadata["signature_status"] == {"feed_signed": True, "items_signed": 3, "total_items": 3}
        assert result.performance["parse_type"] == "metadata-only"

    def test_metadata_only_skips_item_validation(self, parser, signed_feed):
        signed_feed["items"][0]["url"] = "http://insecure.example.com"
        assert parser.parse_metadata_only(signed_feed).success

    def test_metadata_only_requires_version_and_title(self, parser, signed_feed):
        del signed_feed["version"]
        result = parser.parse_metadata_only(signed_feed)
        assert result.error_codes == ["INVALID_METADATA"]

    def test_content_only(self, parser, signed_feed):
        result = parser.parse_content_only(signed_feed)
        content = result.content

        assert result.success
        assert content["total_items"] == 3
        assert content["content_types"] == {"text": 1, "html": 0, "markdown": 0, "mixed": 2}
        assert [item["index"] for item in content["items"]] == [0, 1, 2]
        assert content["items"][0]["tags"] == ["nature", "morning"]

    def test_content_only_without_items(self, parser):
        result = parser.parse_content_only({"title": "No items"})
        assert result.error_codes == ["NO_CONTENT_ITEMS"]

    def test_content_filter(self, parser, signed_feed):
        result = parser.parse_with_content_filter(signed_feed, "html")

        assert result.success
        assert result.content_filter == "html"
        assert result.performance["parse_type"] == "content-filtered"
        assert all(set(item) & {"content_text", "content_markdown"} == set() for item in result.feed["items"])


class TestGetItems:

    @pytest.fixture
    def feed(self, parser, signed_feed):
        return parser.parse(signed_feed).feed

    def test_no_filters(self, parser, feed):
        assert len(parser.get_items(feed)) == 3

    def test_tags_any_of(self, parser, feed):
        items = parser.get_items(feed, ItemFilters(tags=["nature", "absent"]))
        assert [item["title"] for item in items] == ["First light"]

    def test_date_range_inclusive(self, parser, feed):
        items = parser.get_items(feed, ItemFilters(
            date_from="2025-02-01T08:00:00Z",
            date_to="2025-03-01T08:00:00Z",
        ))
        assert [item["title"] for item in items] == ["Second light", "Between"]

    def test_author_falls_back_to_feed_author(self, parser, feed):
        assert len(parser.get_items(feed, ItemFilters(author="Robin Vale"))) == 3
        assert parser.get_items(feed, ItemFilters(author="Someone Else")) == []

    def test_limit(self, parser, feed):
        items = parser.get_items(feed, ItemFilters(limit=2))
        assert [item["title"] for item in items] == ["Second light", "Between"]

    def test_bad_date_filter(self, parser, feed):
        with pytest.raises(ValueError):
            parser.get_items(feed, ItemFilters(date_from="last week"))

    def test_queries_counted(self, parser, feed):
        parser.reset_performance_metrics()
        parser.get_items(feed, ItemFilters(limit=1))
        with pytest.raises(ValueError):
            parser.get_items(feed, ItemFilters(date_to="soon"))

        metrics = parser.get_performance_metrics()
        assert metrics["operation_frequency"] == {"get_items": 2}
        assert metrics["failures"] == 1


class TestParserMetrics:

    def test_parse_types_and_signatures_counted(self, parser, signed_feed):
        parser.parse(signed_feed, ParseOptions(verify_signatures=True))
        parser.parse_metadata_only(signed_feed)
        parser.parse("{bad")

        metrics = parser.get_performance_metrics()
        assert metrics["operation_frequency"] == {"parse": 2, "parse_metadata_only": 1}
        assert metrics["failures"] == 1
        assert metrics["signatures"] == {"verified": 4, "failed": 0}

        parser.reset_performance_metrics()
        assert parser.get_performance_metrics()["signatures"] == {"verified": 0, "failed": 0}
