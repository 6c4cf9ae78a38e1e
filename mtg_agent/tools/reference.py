"""Reference-document lookup tool.

Loads the markdown reference file (``REFERENCE_DOCS_PATH``) once at import
time, splits it into ``###`` sections and answers queries by keyword
overlap.  When the file is missing the tool is simply not offered to the
model.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path

from mtg_agent.config import REFERENCE_DOCS_PATH

logger = logging.getLogger(__name__)

MAX_SECTIONS = 3


def _load_document(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except FileNotFoundError:
        logger.info("Reference document not found at %s; search_reference disabled", path)
        return ""


def split_into_sections(content: str) -> list[dict[str, str]]:
    """Split markdown into ``{"heading", "body"}`` dicts on ``###`` headings."""
    sections: list[dict[str, str]] = []
    parts = re.split(r"###\s+(.+?)(?=\n)", content)
    # parts[0] is the preamble, then alternating heading/body pairs
    for i in range(1, len(parts), 2):
        heading = parts[i].strip()
        body = parts[i + 1].strip() if i + 1 < len(parts) else ""
        body = re.sub(r"\n(?:---|##[^#].*)[\s\S]*$", "", body).strip()
        sections.append({"heading": heading, "body": body})
    return sections


_SECTIONS: list[dict[str, str]] = split_into_sections(_load_document(REFERENCE_DOCS_PATH))


def is_available() -> bool:
    return bool(_SECTIONS)


def search_reference(query: str, sections: list[dict[str, str]] | None = None) -> str:
    """Return the best-matching reference sections for *query*."""
    sections = _SECTIONS if sections is None else sections
    if not sections:
        return "The reference document is not available."

    query_words = {w for w in re.findall(r"[a-z0-9]+", query.lower()) if len(w) > 2}

    scored: list[tuple[int, dict[str, str]]] = []
    for section in sections:
        heading = section["heading"].lower()
        text = f"{heading} {section['body'].lower()}"
        score = sum(1 for w in query_words if w in text)
        # Heading hits count double
        score += sum(2 for w in query_words if len(w) > 3 and w in heading)
        if score:
            scored.append((score, section))

    if not scored:
        return (
            "No reference entry matched. Rely on scryfall_search for card data "
            "and ask the user for clarification if needed."
        )

    scored.sort(key=lambda pair: pair[0], reverse=True)
    lines: list[str] = []
    for _, section in scored[:MAX_SECTIONS]:
        lines.append(f"**{section['heading']}**")
        lines.append(section["body"])
        lines.append("")
    return "\n".join(lines).strip()
