"""
Unit tests for localized feedback strings.
"""

from gradeflow.localization import LocalizationService, format_template


class TestFormatTemplate:
    """Tests for placeholder interpolation."""

    def test_dollar_and_plain_placeholders(self) -> None:
        """Test both placeholder styles are filled."""
        assert format_template("${a} and {b}", {"a": 1, "b": "two"}) == "1 and two"

    def test_unknown_names_become_empty(self) -> None:
        """Test missing params render as empty strings."""
        assert format_template("Score: ${points}.", {}) == "Score: ."

    def test_no_params(self) -> None:
        """Test templates without params are left as text."""
        assert format_template("Plain text") == "Plain text"


class TestLocalizationService:
    """Tests for LocalizationService lookups."""

    def test_english_with_params(self, localization: LocalizationService) -> None:
        """Test an English message with interpolation."""
        assert (
            localization.get_localized_string("incorrectTF", "en", {"answer": "true"})
            == "Incorrect. The statement is true."
        )

    def test_translated_message(self, localization: LocalizationService) -> None:
        """Test a supported language returns its own text."""
        assert localization.get_localized_string("noOptionSelected", "fr") == (
            "Aucune option n'a été sélectionnée."
        )

    def test_regional_code_uses_base_language(self, localization: LocalizationService) -> None:
        """Test de-AT resolves to the German table."""
        assert localization.get_localized_string("true", "de-AT") == "wahr"

    def test_missing_translation_falls_back_to_english(self, localization: LocalizationService) -> None:
        """Test keys absent from a language fall back to English."""
        assert localization.get_localized_string("invalidUrl", "de", {"url": "x"}) == (
            "'x' is not a valid URL."
        )

    def test_unknown_language(self, localization: LocalizationService) -> None:
        """Test an unknown language falls back to English."""
        assert localization.get_localized_string("noResponse", "xx") == (
            "No response was submitted for this question."
        )

    def test_unknown_key_returns_key(self, localization: LocalizationService) -> None:
        """Test unknown keys are returned verbatim."""
        assert localization.get_localized_string("missingKey", "en") == "missingKey"

    def test_custom_catalogue(self) -> None:
        """Test a caller-supplied catalogue replaces the built-in one."""
        service = LocalizationService({"en": {"hello": "Hi {name}"}})

        assert service.get_localized_string("hello", None, {"name": "Ada"}) == "Hi Ada"
