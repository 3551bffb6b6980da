"""Turn the service's article HTML into plain text for the local store."""

import re

from bs4 import BeautifulSoup

_blank_lines_re = re.compile(r"\n{3,}")


def html_to_text(raw_html: str | None) -> str:
    """Strip tags, scripts and styles; keep one block of text per line."""
    if not raw_html:
        return ""

    soup = BeautifulSoup(raw_html, "html.parser")
    for tag in soup(["script", "style"]):
        tag.decompose()
    text = soup.get_text("\n", strip=True)
    return _blank_lines_re.sub("\n\n", text)
