from datetime import datetime

import pytest

from app.studio.results import ActionError, ActionErrorCode
from app.studio.utils import next_version, parse_timestamp, slugify
from app.studio.validation import clean_text, unsafe_markup_reason, validate_choice, validate_item_content


@pytest.mark.parametrize(
    "text",
    ["<b>hi</b>", "<img src=x>", "javascript:alert(1)", "JavaScript:void(0)", "x onerror=alert(1)", "data:text/html;base64,xx"],
)
def test_unsafe_markup_is_flagged(text):
    assert unsafe_markup_reason(text) is not None


@pytest.mark.parametrize("text", ["Plain text", "margin > 30%", "Reduce costs by 20%", "Ongoing maintenance"])
def test_plain_text_passes(text):
    assert unsafe_markup_reason(text) is None


def test_item_content_limits():
    assert validate_item_content("  trimmed  ") == "trimmed"
    assert validate_item_content("x" * 500) == "x" * 500
    with pytest.raises(ActionError) as exc:
        validate_item_content("x" * 501)
    assert exc.value.code is ActionErrorCode.VALIDATION_ERROR
    assert exc.value.message == "Item content must be 500 characters or less"
    with pytest.raises(ActionError):
        validate_item_content("   ")
    with pytest.raises(ActionError):
        validate_item_content(42)


def test_clean_text_optional():
    assert clean_text(None, label="Description", max_length=10) is None
    assert clean_text("", label="Description", max_length=10) is None


def test_validate_choice():
    assert validate_choice("high", ("high", "low"), label="priority") == "high"
    assert validate_choice(None, ("high", "low"), label="priority") is None
    assert validate_choice("", ("high", "low"), label="priority") is None
    with pytest.raises(ActionError) as exc:
        validate_choice("urgent", ("high", "low"), label="priority")
    assert exc.value.message == "Invalid priority: urgent. Must be one of: high, low"


def test_parse_timestamp():
    assert parse_timestamp("2026-03-01T10:00:00") == datetime(2026, 3, 1, 10, 0, 0)
    assert parse_timestamp("2026-03-01T12:00:00+02:00") == datetime(2026, 3, 1, 10, 0, 0)
    assert parse_timestamp("2026-03-01T10:00:00Z") == datetime(2026, 3, 1, 10, 0, 0)
    assert parse_timestamp("") is None
    with pytest.raises(ValueError):
        parse_timestamp("yesterday")


def test_next_version_is_strictly_increasing():
    future = datetime(2999, 1, 1)
    assert next_version(future) > future
    assert next_version(None) is not None


def test_slugify():
    assert slugify("Acme Platform!") == "acme-platform"
    assert slugify("  --Hello   World-- ") == "hello-world"
    assert slugify("") == ""
