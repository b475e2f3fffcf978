"""
Market Bot - Text Utilities
============================
Stateless helpers used by the ``IngestionPipeline`` to sanitise scraped
NSE pages before chunking.
"""

from __future__ import annotations

import re
import unicodedata


# Control characters (C0/C1) except \n, \r, \t, plus BOM, zero-width
# characters, soft hyphens and directional marks.
_NON_PRINTABLE_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f-\x9f\ufeff\u200b\u200c\u200d\u200e\u200f\u00ad\u2060\ufffe]")


def clean_text(text: str) -> str:
    """
    Sanitise raw document text for embedding.

    Steps:
        1. Unicode NFKC normalisation (folds non-breaking spaces and
           full-width digits that appear in copied price tables).
        2. Strip non-printable / zero-width characters.
        3. Collapse runs of horizontal whitespace into a single space,
           *preserving* newlines.
        4. Strip leading / trailing whitespace from every line.
        5. Collapse 3+ consecutive newlines to a single blank line.

    Args:
        text: Raw text read from a source file.

    Returns:
        Cleaned text ready for chunking.
    """
    text = unicodedata.normalize("NFKC", text)
    text = _NON_PRINTABLE_RE.sub("", text)
    text = re.sub(r"[^\S\n]+", " ", text)
    text = "\n".join(line.strip() for line in text.splitlines())
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()
