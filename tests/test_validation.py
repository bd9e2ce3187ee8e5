"""Tests for the validation module."""

from pathlib import Path

import pytest

from enrollmentcapacity.core.exceptions import DataValidationError
from enrollmentcapacity.models import WaitlistResponse
from enrollmentcapacity.validation import (
    validate_directory_exists,
    validate_identifier,
    validate_priority,
    validate_response,
)


class TestValidateIdentifier:
    """Tests for validate_identifier function."""

    def test_strips_whitespace(self):
        assert validate_identifier("  S1 ", "studentId") == "S1"

    @pytest.mark.parametrize("value", ["", "   ", None, 42])
    def test_rejects_empty_or_non_string(self, value):
        with pytest.raises(DataValidationError) as exc_info:
            validate_identifier(value, "studentId")
        assert exc_info.value.field == "studentId"
        assert exc_info.value.code == "VALIDATION_ERROR"


class TestValidatePriority:
    """Tests for validate_priority function."""

    def test_accepts_negative_and_positive(self):
        assert validate_priority(-3) == -3
        assert validate_priority(7) == 7

    @pytest.mark.parametrize("value", [True, 1.5, "1", None])
    def test_rejects_non_integers(self, value):
        with pytest.raises(DataValidationError):
            validate_priority(value)


class TestValidateResponse:
    """Tests for validate_response function."""

    def test_accept_and_decline(self):
        assert validate_response("accept") == WaitlistResponse.ACCEPT
        assert validate_response(WaitlistResponse.DECLINE) == WaitlistResponse.DECLINE

    def test_no_response_is_reserved(self):
        with pytest.raises(DataValidationError):
            validate_response("no_response")

    def test_unknown_value(self):
        with pytest.raises(DataValidationError) as exc_info:
            validate_response("maybe")
        assert exc_info.value.field == "response"


class TestValidateDirectoryExists:
    """Tests for validate_directory_exists function."""

    def test_existing_directory(self, tmp_path: Path):
        assert validate_directory_exists(str(tmp_path)) == tmp_path

    def test_missing_directory_raises(self, tmp_path: Path):
        with pytest.raises(DataValidationError):
            validate_directory_exists(str(tmp_path / "missing"))

    def test_creates_missing_directory(self, tmp_path: Path):
        target = tmp_path / "new" / "nested"
        validate_directory_exists(str(target), create_if_missing=True)
        assert target.is_dir()

    def test_file_is_not_directory(self, tmp_path: Path):
        file_path = tmp_path / "file.txt"
        file_path.write_text("content")
        with pytest.raises(DataValidationError):
            validate_directory_exists(str(file_path))
