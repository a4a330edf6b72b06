"""Language detection helpers."""
from __future__ import annotations

import logging

from langdetect import DetectorFactory, LangDetectException, detect

LOGGER = logging.getLogger(__name__)
DetectorFactory.seed = 0

UNKNOWN_LANGUAGE = "unknown"
_SAMPLE_CHARS = 5000
_MIN_LETTERS = 20


class LanguageDetector:
    """Wraps langdetect providing a robust API."""

    def detect(self, text: str) -> str:
        sample = text.strip()[:_SAMPLE_CHARS]
        if sum(char.isalpha() for char in sample) < _MIN_LETTERS:
            return UNKNOWN_LANGUAGE
        try:
            language = detect(sample)
            LOGGER.debug("Detected language: %s", language)
            return language
        except LangDetectException:
            LOGGER.info("Unable to determine language for text of length %s", len(text))
            return UNKNOWN_LANGUAGE
