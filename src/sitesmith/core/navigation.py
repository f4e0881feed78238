"""Navigation directives embedded in generated narrative text.

A directive is a single-line marker ``[ACTION:BROWSER_NAVIGATE("<url>")]``.
Only the first directive in a text is honoured.
"""

from __future__ import annotations

import re
from typing import Optional

NAVIGATE_DIRECTIVE = re.compile(r"\[ACTION:BROWSER_NAVIGATE\(\"([^\"\n]+)\"\)\]")
MAX_PAGE_TEXT_CHARS = 10_000
EMPTY_PAGE_TEXT = "Could not extract text from page."


def find_navigation_url(text: Optional[str]) -> Optional[str]:
    if not text:
        return None
    match = NAVIGATE_DIRECTIVE.search(text)
    if not match:
        return None
    url = match.group(1).strip()
    return url or None


def collapse_whitespace(text: str) -> str:
    return re.sub(r"\s\s+", " ", text).strip()


def build_continuation_prompt(page_text: str) -> str:
    readable = collapse_whitespace(page_text or "") or EMPTY_PAGE_TEXT
    return (
        "I have navigated to the page. Here is the extracted text content. "
        "Please analyze it and continue with the plan:\n\n"
        f"{readable[:MAX_PAGE_TEXT_CHARS]}"
    )
