"""Text sanitisation and structural helpers shared by every parser."""
from __future__ import annotations

import re
import unicodedata
from typing import Any, Dict, Iterable, List

_PUNCTUATION_MAP = str.maketrans(
    {
        "\N{LEFT SINGLE QUOTATION MARK}": "'",
        "\N{RIGHT SINGLE QUOTATION MARK}": "'",
        "\N{SINGLE LOW-9 QUOTATION MARK}": "'",
        "\N{SINGLE HIGH-REVERSED-9 QUOTATION MARK}": "'",
        "\N{PRIME}": "'",
        "\N{LEFT DOUBLE QUOTATION MARK}": '"',
        "\N{RIGHT DOUBLE QUOTATION MARK}": '"',
        "\N{DOUBLE LOW-9 QUOTATION MARK}": '"',
        "\N{DOUBLE HIGH-REVERSED-9 QUOTATION MARK}": '"',
        "\N{DOUBLE PRIME}": '"',
        "\N{HYPHEN}": "-",
        "\N{NON-BREAKING HYPHEN}": "-",
        "\N{FIGURE DASH}": "-",
        "\N{EN DASH}": "-",
        "\N{EM DASH}": "-",
        "\N{HORIZONTAL BAR}": "-",
        "\N{MINUS SIGN}": "-",
        "\N{NO-BREAK SPACE}": " ",
        "\N{HORIZONTAL ELLIPSIS}": "...",
        "\N{ZERO WIDTH SPACE}": None,
        "\N{ZERO WIDTH NON-JOINER}": None,
        "\N{ZERO WIDTH JOINER}": None,
        "\N{ZERO WIDTH NO-BREAK SPACE}": None,
    }
)
_UNSAFE_CHARS_RE = re.compile(r"[^\x20-\x7E\n\t]")
_WHITESPACE_RE = re.compile(r"[ \t]+")
_INNER_WHITESPACE_RE = re.compile(r"(?<=\S)[ \t]+")
_TRAILING_SPACE_RE = re.compile(r" +\n")
_LEADING_SPACE_RE = re.compile(r"\n +")
_MULTIPLE_NEWLINES_RE = re.compile(r"\n{3,}")

_HEADER_PATTERNS = (
    re.compile(r"^[A-Z][A-Z\s]{3,50}$"),
    re.compile(r"^#+\s+.+"),
    re.compile(r"^\d+\.\s+[A-Z].+"),
)
MAX_HEADER_LENGTH = 100


def sanitize_text(text: str, *, preserve_indentation: bool = False) -> str:
    """Reduce ``text`` to printable ASCII plus newlines and tabs.

    Typographic quotes and dashes are mapped to their ASCII forms and accents
    are stripped before anything outside the safe range is blanked out, so
    accented words keep their base letters instead of losing them. With
    ``preserve_indentation`` leading whitespace on each line is kept, which
    matters for pretty-printed JSON.
    """

    if not text:
        return ""
    normalized = text.translate(_PUNCTUATION_MAP)
    normalized = unicodedata.normalize("NFKD", normalized)
    normalized = "".join(char for char in normalized if not unicodedata.combining(char))
    normalized = normalized.replace("\r\n", "\n").replace("\r", "\n")
    normalized = _UNSAFE_CHARS_RE.sub(" ", normalized)
    if preserve_indentation:
        normalized = _INNER_WHITESPACE_RE.sub(" ", normalized)
    else:
        normalized = _WHITESPACE_RE.sub(" ", normalized)
        normalized = _LEADING_SPACE_RE.sub("\n", normalized)
    normalized = _TRAILING_SPACE_RE.sub("\n", normalized)
    normalized = _MULTIPLE_NEWLINES_RE.sub("\n\n", normalized)
    return normalized.strip()


def count_words(text: str) -> int:
    return len(text.split())


def extract_headers(text: str) -> List[str]:
    """Return lines that look like section headings.

    Recognises ALL CAPS lines, markdown ``#`` headings and numbered headings
    such as ``2. Scope``.
    """

    headers: List[str] = []
    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line or len(line) >= MAX_HEADER_LENGTH:
            continue
        if any(pattern.match(line) for pattern in _HEADER_PATTERNS):
            headers.append(line)
    return headers


def page_metadata(content: str, **extra: Any) -> Dict[str, Any]:
    metadata: Dict[str, Any] = {
        "headers": extract_headers(content),
        "wordCount": count_words(content),
        "characterCount": len(content),
    }
    metadata.update({key: value for key, value in extra.items() if value is not None})
    return metadata


def build_structure(contents: Iterable[str], sections: List[Dict[str, Any]]) -> Dict[str, Any]:
    texts = list(contents)
    return {
        "pageCount": len(texts),
        "wordCount": sum(count_words(text) for text in texts),
        "characterCount": sum(len(text) for text in texts),
        "sections": sections,
    }


__all__ = [
    "build_structure",
    "count_words",
    "extract_headers",
    "page_metadata",
    "sanitize_text",
]
