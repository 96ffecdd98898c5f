"""
Localized feedback strings.

Messages are looked up by key and language, falling back to English, and
interpolate `${name}` or `{name}` placeholders from the supplied params.
"""

import re
from typing import Any, Mapping

_PLACEHOLDER = re.compile(r"\$\{(\w+)\}|\{(\w+)\}")

DEFAULT_LANGUAGE = "en"

MESSAGES: dict[str, dict[str, str]] = {
    "en": {
        "noOptionSelected": "No option was selected.",
        "invalidSelection": "'${learnerChoice}' is not one of the available options.",
        "correctSelection": "Correct! '${learnerChoice}' is right.",
        "incorrectSelection": "'${learnerChoice}' is not correct.",
        "allCorrectSelected": "You selected all the correct options.",
        "correctOptions": "The correct options were: ${correctOptions}.",
        "tooManyChoicesSelected": "Please select at most ${max} option.",
        "unsupportedChoiceType": "Unsupported choice question type: ${type}.",
        "correctTF": "Correct! The statement is ${answer}.",
        "incorrectTF": "Incorrect. The statement is ${answer}.",
        "invalidTrueFalse": "'${answer}' could not be read as true or false.",
        "expectedTextResponse": "A text response was expected.",
        "expectedUrlResponse": "A URL response was expected.",
        "invalidUrl": "'${url}' is not a valid URL.",
        "unableToFetchUrl": "The content at ${url} could not be retrieved, so it could not be graded.",
        "expectedFileResponse": "At least one file was expected.",
        "invalidFileResponse": "File '${filename}' is missing its storage location or link.",
        "expectedImageResponse": "At least one image was expected.",
        "invalidImageResponse": "Image '${filename}' has no data, URL or storage location.",
        "unsupportedImageFormat": "Image format '${format}' is not supported.",
        "imageTooLarge": "Image '${filename}' exceeds the ${max}MB limit.",
        "expectedPresentationResponse": "A presentation response was expected.",
        "expectedLinkFileResponse": "Expected a file-based or URL-based response, but did not receive one.",
        "noResponse": "No response was submitted for this question.",
        "true": "true",
        "false": "false",
    },
    "fr": {
        "noOptionSelected": "Aucune option n'a été sélectionnée.",
        "correctSelection": "Correct ! '${learnerChoice}' est la bonne réponse.",
        "incorrectSelection": "'${learnerChoice}' n'est pas correct.",
        "correctTF": "Correct ! L'affirmation est ${answer}.",
        "incorrectTF": "Incorrect. L'affirmation est ${answer}.",
        "noResponse": "Aucune réponse n'a été soumise pour cette question.",
        "true": "vraie",
        "false": "fausse",
    },
    "es": {
        "noOptionSelected": "No se seleccionó ninguna opción.",
        "correctSelection": "¡Correcto! '${learnerChoice}' es la respuesta.",
        "incorrectSelection": "'${learnerChoice}' no es correcto.",
        "correctTF": "¡Correcto! La afirmación es ${answer}.",
        "incorrectTF": "Incorrecto. La afirmación es ${answer}.",
        "noResponse": "No se envió ninguna respuesta para esta pregunta.",
        "true": "verdadera",
        "false": "falsa",
    },
    "de": {
        "noOptionSelected": "Es wurde keine Option ausgewählt.",
        "correctTF": "Richtig! Die Aussage ist ${answer}.",
        "incorrectTF": "Falsch. Die Aussage ist ${answer}.",
        "noResponse": "Für diese Frage wurde keine Antwort eingereicht.",
        "true": "wahr",
        "false": "falsch",
    },
}


def format_template(template: str, params: Mapping[str, Any] | None = None) -> str:
    """Replace `${name}` and `{name}` placeholders; unknown names become empty."""
    values = params or {}

    def _substitute(match: re.Match[str]) -> str:
        name = match.group(1) or match.group(2)
        value = values.get(name)
        return "" if value is None else str(value)

    return _PLACEHOLDER.sub(_substitute, template)


class LocalizationService:
    """Looks up feedback strings by key and language."""

    def __init__(self, messages: Mapping[str, Mapping[str, str]] | None = None):
        self._messages = messages or MESSAGES

    def get_localized_string(
        self,
        key: str,
        language: str | None = None,
        params: Mapping[str, Any] | None = None,
    ) -> str:
        """
        Return the message for `key` in `language`.

        Falls back to the base language of a regional code (``pt-BR`` -> ``pt``),
        then to English, then to the key itself.
        """
        for candidate in self._language_candidates(language):
            table = self._messages.get(candidate)
            if table and key in table:
                return format_template(table[key], params)
        return key

    @staticmethod
    def _language_candidates(language: str | None) -> list[str]:
        candidates: list[str] = []
        if language:
            candidates.append(language)
            base = language.split("-")[0].split("_")[0]
            if base != language:
                candidates.append(base)
        candidates.append(DEFAULT_LANGUAGE)
        return candidates
