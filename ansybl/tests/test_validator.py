"""
Tests for FeedValidator: schema validation, business rules, warnings,
custom schemas, batches and counters.
"""

import copy
import json
from concurrent.futures import ThreadPoolExecutor

import pytest

from ansybl.common_tools import schema_validator
from ansybl.common_tools.diagnostics import ErrorCode
from ansybl.common_tools.schema_validator import FeedValidator
from ansybl.config import ValidatorConfig


def codes(result):
    return set(result.error_codes)


class TestValidateDocument:

    def test_valid_document(self, validator, minimal_feed):
        result = validator.validate_document(minimal_feed)
        assert result.valid
        assert result.errors == []
        assert result.metadata.item_count == 1
        assert result.metadata.has_extensions is False

    def test_accepts_json_text_and_bytes(self, validator, minimal_feed):
        text = json.dumps(minimal_feed)
        assert validator.validate_document(text).valid
        assert validator.validate_document(text.encode("utf-8")).valid

    def test_invalid_json(self, validator):
        result = validator.validate_document('{"title": ')
        assert not result.valid
        assert result.error_codes == ["INVALID_JSON"]
        assert result.errors[0].field == "document"

    def test_deeply_nested_text_is_invalid_json(self, validator):
        result = validator.validate_document("[" * 100000 + "]" * 100000)
        assert not result.valid
        assert result.error_codes == ["INVALID_JSON"]

    def test_deeply_nested_extension_rejected(self, validator, minimal_feed):
        nested = []
        for _ in range(500):
            nested = [nested]
        minimal_feed["_archive"] = nested

        result = validator.validate_document(minimal_feed)
        assert result.error_codes == ["INVALID_JSON"]
        assert "deeper than" in result.errors[0].details

    def test_moderate_nesting_accepted(self, validator, minimal_feed):
        nested = {}
        for _ in range(20):
            nested = {"inner": nested}
        minimal_feed["_archive"] = nested
        assert validator.validate_document(minimal_feed).valid

    def test_missing_title(self, validator, minimal_feed):
        del minimal_feed["title"]
        result = validator.validate_document(minimal_feed)

        assert not result.valid
        [error] = result.errors_at("title")
        assert error.code == ErrorCode.MISSING_REQUIRED_FIELD

    def test_missing_author_public_key(self, validator, minimal_feed):
        del minimal_feed["author"]["public_key"]
        result = validator.validate_document(minimal_feed)

        [error] = result.errors_at("author.public_key")
        assert error.code == ErrorCode.MISSING_REQUIRED_FIELD

    def test_http_home_page_url(self, validator, minimal_feed):
        minimal_feed["home_page_url"] = "http://example.com"
        result = validator.validate_document(minimal_feed)

        [error] = result.errors_at("home_page_url")
        assert error.code == ErrorCode.INVALID_PATTERN
        assert "HTTPS" in error.message

    def test_item_id_and_reply_must_be_https(self, validator, minimal_feed):
        minimal_feed["items"][0]["id"] = "item-1"
        minimal_feed["items"][0]["in_reply_to"] = "not a url"
        result = validator.validate_document(minimal_feed)

        assert not result.valid
        assert result.errors_at("items[0].id")[0].code == ErrorCode.INVALID_PATTERN
        assert result.errors_at("items[0].in_reply_to")[0].code == ErrorCode.INVALID_PATTERN

    def test_bad_item_date(self, validator, minimal_feed):
        minimal_feed["items"][0]["date_published"] = "yesterday"
        result = validator.validate_document(minimal_feed)

        [error] = result.errors_at("items[0].date_published")
        assert error.code == ErrorCode.INVALID_FORMAT

    def test_bad_uuid(self, validator, minimal_feed):
        minimal_feed["items"][0]["uuid"] = "not-a-uuid"
        result = validator.validate_document(minimal_feed)
        assert result.errors_at("items[0].uuid")[0].code == ErrorCode.INVALID_FORMAT

    def test_wrong_type(self, validator, minimal_feed):
        minimal_feed["items"] = "none"
        result = validator.validate_document(minimal_feed)

        [error] = result.errors_at("items")
        assert error.code == ErrorCode.INVALID_TYPE
        assert "got string" in error.message

    def test_too_many_tags(self, validator, minimal_feed):
        minimal_feed["items"][0]["tags"] = [f"tag{index}" for index in range(21)]
        result = validator.validate_document(minimal_feed)
        assert result.errors_at("items[0].tags")[0].code == ErrorCode.TOO_MANY_ITEMS

    def test_unknown_field(self, validator, minimal_feed):
        minimal_feed["colour"] = "blue"
        minimal_feed["items"][0]["rating"] = 5
        result = validator.validate_document(minimal_feed)

        assert result.errors_at("colour")[0].code == ErrorCode.UNKNOWN_FIELD
        assert result.errors_at("items[0].rating")[0].code == ErrorCode.UNKNOWN_FIELD

    def test_extension_fields_allowed(self, validator, minimal_feed):
        minimal_feed["_source"] = "import"
        minimal_feed["items"][0]["_score"] = 3
        result = validator.validate_document(minimal_feed)

        assert result.valid
        assert result.metadata.has_extensions is True

    def test_does_not_modify_input(self, validator, minimal_feed):
        minimal_feed["items"].append(copy.deepcopy(minimal_feed["items"][0]))
        snapshot = copy.deepcopy(minimal_feed)
        validator.validate_document(minimal_feed)
        assert minimal_feed == snapshot


class TestBusinessRules:

    def test_duplicate_item_id_reported_on_second(self, validator, minimal_feed):
        minimal_feed["items"].append(copy.deepcopy(minimal_feed["items"][0]))
        result = validator.validate_document(minimal_feed)

        assert result.error_codes == ["DUPLICATE_ITEM_ID"]
        assert result.errors[0].field == "items[1].id"

    def test_modified_before_published(self, validator, minimal_feed):
        minimal_feed["items"][0]["date_modified"] = "2024-12-31T00:00:00Z"
        result = validator.validate_document(minimal_feed)
        assert result.errors_at("items[0].date_modified")[0].code == ErrorCode.INVALID_DATE_ORDER

    def test_item_without_content(self, validator, minimal_feed):
        del minimal_feed["items"][0]["title"]
        del minimal_feed["items"][0]["content_text"]
        result = validator.validate_document(minimal_feed)
        assert result.errors_at("items[0]")[0].code == ErrorCode.NO_CONTENT

    def test_self_reply(self, validator, minimal_feed):
        minimal_feed["items"][0]["in_reply_to"] = "https://example.com/1"
        result = validator.validate_document(minimal_feed)
        assert codes(result) == {"SELF_REPLY"}

    def test_attachment_rules(self, validator, minimal_feed):
        minimal_feed["items"][0]["attachments"] = [{
            "url": "https://example.com/a.png",
            "mime_type": "image/png",
            "width": 0,
            "height": 10,
            "size_in_bytes": -1,
            "duration_in_seconds": -2.5,
        }]
        result = validator.validate_document(minimal_feed)
        assert codes(result) == {"INVALID_IMAGE_DIMENSIONS", "INVALID_FILE_SIZE", "INVALID_DURATION"}

    def test_schema_and_business_errors_merged(self, validator, minimal_feed):
        minimal_feed["home_page_url"] = "http://example.com"
        minimal_feed["items"].append(copy.deepcopy(minimal_feed["items"][0]))
        result = validator.validate_document(minimal_feed)
        assert codes(result) == {"INVALID_PATTERN", "DUPLICATE_ITEM_ID"}

    def test_bad_extension_name(self, validator, minimal_feed):
        minimal_feed["_1bad"] = True
        result = validator.validate_document(minimal_feed)
        assert result.errors_at("_1bad")[0].code == ErrorCode.INVALID_EXTENSION_FIELD_NAME


class TestWarnings:

    def test_recommendations_for_valid_document(self, validator, minimal_feed):
        result = validator.validate_document(minimal_feed)
        warning_codes = {warning.code.value for warning in result.warnings}
        assert {"MISSING_DESCRIPTION", "MISSING_ICON", "MISSING_LANGUAGE"} <= warning_codes

    def test_alt_text_and_title_summary(self, validator, minimal_feed):
        item = minimal_feed["items"][0]
        del item["title"]
        item["attachments"] = [{"url": "https://example.com/a.png", "mime_type": "image/png"}]
        result = validator.validate_document(minimal_feed)

        fields = {warning.field: warning.code.value for warning in result.warnings}
        assert fields["items[0]"] == "MISSING_TITLE_SUMMARY"
        assert fields["items[0].attachments[0].alt_text"] == "MISSING_ALT_TEXT"

    def test_no_warnings_when_disabled(self, validator, minimal_feed):
        assert validator.validate_document(minimal_feed, include_warnings=False).warnings == []

    def test_no_warnings_for_invalid_document(self, validator, minimal_feed):
        del minimal_feed["title"]
        assert validator.validate_document(minimal_feed).warnings == []


class TestContentItem:

    def test_valid_item(self, validator, minimal_feed):
        assert validator.validate_content_item(minimal_feed["items"][0]).valid

    def test_paths_rerooted(self, validator):
        result = validator.validate_content_item({"id": "https://example.com/x", "url": "http://example.com", "title": "t"})

        fields = {error.field: error.code for error in result.errors}
        assert fields["url"] == ErrorCode.INVALID_PATTERN
        assert fields["date_published"] == ErrorCode.MISSING_REQUIRED_FIELD

    def test_no_content_reported_on_item(self, validator):
        result = validator.validate_content_item(
            {"id": "https://example.com/x", "url": "https://example.com", "date_published": "2025-01-01T00:00:00Z"}
        )
        assert [(error.field, error.code) for error in result.errors] == [("item", ErrorCode.NO_CONTENT)]

    def test_deeply_nested_item_not_valid(self, validator, minimal_feed):
        nested = []
        for _ in range(100):
            nested = [nested]
        item = {**minimal_feed["items"][0], "_thread": nested}

        result = validator.validate_content_item(item)
        assert not result.valid
        assert [(error.field, error.code) for error in result.errors] == [("document", ErrorCode.INVALID_JSON)]


class TestCustomSchema:

    CUSTOM = {
        "properties": {"category": {"type": "string", "enum": ["news", "blog"]}},
        "required": ["category"],
    }

    def test_custom_required_field(self, validator, minimal_feed):
        result = validator.validate_document(minimal_feed, custom_schema=self.CUSTOM)
        assert result.errors_at("category")[0].code == ErrorCode.MISSING_REQUIRED_FIELD

        minimal_feed["category"] = "gossip"
        result = validator.validate_document(minimal_feed, custom_schema=self.CUSTOM)
        assert result.errors_at("category")[0].code == ErrorCode.INVALID_VALUE

        minimal_feed["category"] = "news"
        assert validator.validate_document(minimal_feed, custom_schema=self.CUSTOM).valid

    def test_base_schema_not_mutated(self, minimal_feed):
        validator = FeedValidator()
        before = copy.deepcopy(validator.schema)
        validator.validate_document(minimal_feed, custom_schema=self.CUSTOM)

        assert validator.schema == before
        assert validator.validate_document(minimal_feed).valid

    def test_custom_validators_cached(self):
        validator = FeedValidator()
        first = validator.create_custom_validator(self.CUSTOM)
        second = validator.create_custom_validator(copy.deepcopy(self.CUSTOM))
        other = validator.create_custom_validator({"properties": {"x": {"type": "string"}}})

        assert first is second
        assert other is not first


class TestBatch:

    def test_results_in_input_order(self, validator, minimal_feed):
        invalid = copy.deepcopy(minimal_feed)
        del invalid["title"]
        documents = [minimal_feed, invalid, "{broken", minimal_feed]

        results = validator.validate_batch(documents, max_workers=3)

        assert [result.batch_index for result in results] == [0, 1, 2, 3]
        assert [result.valid for result in results] == [True, False, False, True]
        assert results[2].error_codes == ["INVALID_JSON"]

    def test_failure_isolated(self, validator, minimal_feed):
        class Unreadable:
            def model_dump(self, **kwargs):
                raise RuntimeError("cannot dump")

        results = validator.validate_batch([Unreadable(), minimal_feed])
        assert results[0].error_codes == ["BATCH_VALIDATION_ERROR"]
        assert results[1].valid


class TestValidatorMetrics:

    def test_counters_and_reset(self, minimal_feed):
        validator = FeedValidator()
        validator.validate_document(minimal_feed)
        validator.validate_document("{broken")

        metrics = validator.get_performance_metrics()
        assert metrics["total_validations"] == 2
        assert metrics["valid_documents"] == 1
        assert metrics["invalid_documents"] == 1
        assert metrics["error_frequency"] == {"INVALID_JSON": 1}

        validator.reset_performance_metrics()
        metrics = validator.get_performance_metrics()
        assert metrics["total_validations"] == 0
        assert metrics["error_frequency"] == {}


class TestValidatorConfig:

    def test_warnings_default_from_config(self, minimal_feed):
        validator = FeedValidator(config=ValidatorConfig(include_warnings=False))

        assert validator.validate_document(minimal_feed).warnings == []
        assert validator.validate_document(minimal_feed, include_warnings=True).warnings
        assert validator.create_custom_validator({"properties": {}}).config is validator.config

    def test_batch_workers_default_from_config(self, monkeypatch, minimal_feed):
        seen = []

        class RecordingExecutor(ThreadPoolExecutor):
            def __init__(self, max_workers=None, **kwargs):
                seen.append(max_workers)
                super().__init__(max_workers=max_workers, **kwargs)

        monkeypatch.setattr(schema_validator, "ThreadPoolExecutor", RecordingExecutor)
        validator = FeedValidator(config=ValidatorConfig(batch_max_workers=2))

        validator.validate_batch([minimal_feed])
        validator.validate_batch([minimal_feed], max_workers=5)
        assert seen == [2, 5]
