# src/doctranscribe/formatter.py
from __future__ import annotations

import re

_MANY_SPACES = re.compile(r"[ ]{3,}")
_MANY_NEWLINES = re.compile(r"\n{3,}")

# OCR often drops the space after punctuation; only repair lowercase junctions
# so abbreviations (e.g.) and numerals (3.14, 10:30) stay intact
_MISSING_SPACE = [
    re.compile(r"(?<=[a-z])\.(?=[A-Z])"),
    re.compile(r"(?<=[a-z]),(?=[A-Za-z])"),
    re.compile(r"(?<=[a-z]):(?=[A-Za-z])"),
]

# sentence end, one newline, capital letter -> paragraph break
_PARAGRAPH = re.compile(r"([.!?])[^\S\n]*\n(?=[^\S\n]*[A-Z])")


def format_transcript(text: str) -> str:
    """
    Formats and cleans up transcript text for display and storage.

    Applying it twice gives the same result as applying it once, and the
    output never holds three spaces or three newlines in a row.
    """
    if not text or not text.strip():
        return ""

    # Step 1: normalize whitespace
    formatted = text.replace("\r\n", "\n").replace("\r", "\n").replace("\t", "    ")
    formatted = _MANY_SPACES.sub("  ", formatted)
    formatted = _MANY_NEWLINES.sub("\n\n", formatted)

    # Step 2: fix missing spaces after punctuation
    for pattern in _MISSING_SPACE:
        formatted = pattern.sub(lambda m: m.group(0) + " ", formatted)

    # Step 3: paragraph breaks after sentence ends
    formatted = _PARAGRAPH.sub(r"\1\n\n", formatted)

    # Step 4: trim lines; blank lines left by trimming can line up again
    formatted = "\n".join(line.strip() for line in formatted.split("\n"))
    formatted = _MANY_NEWLINES.sub("\n\n", formatted)

    return formatted.strip()
