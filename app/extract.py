import logging
import re
from typing import Optional

from bs4 import BeautifulSoup

logger = logging.getLogger(__name__)

# Maximum characters handed to Gemini (keeps token usage reasonable)
MAX_CONTENT_LENGTH = 50_000

_HTML_SUFFIXES = (".html", ".htm")


def _extract_text_from_html(html: str) -> str:
    """Parse HTML with BeautifulSoup, strip boilerplate, return text."""
    soup = BeautifulSoup(html, "lxml")

    for tag in soup.find_all(["script", "style", "nav", "footer", "header", "noscript"]):
        tag.decompose()

    text = soup.get_text(separator="\n", strip=True)

    # Collapse runs of blank lines into a single newline
    return re.sub(r"\n{3,}", "\n\n", text)


def _is_html(content_type: Optional[str], file_name: Optional[str]) -> bool:
    if content_type and content_type.split(";")[0].strip().lower() == "text/html":
        return True
    return bool(file_name) and file_name.lower().endswith(_HTML_SUFFIXES)


def extract_text(
    data: bytes,
    content_type: Optional[str] = None,
    file_name: Optional[str] = None,
) -> str:
    """Turn uploaded bytes into text for licensing analysis."""
    text = data.decode("utf-8", errors="replace")

    if _is_html(content_type, file_name):
        text = _extract_text_from_html(text)
        logger.info("Extracted %d chars of text from HTML %s", len(text), file_name)

    return text[:MAX_CONTENT_LENGTH]
