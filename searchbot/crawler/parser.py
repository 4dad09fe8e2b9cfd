"""
HTML extraction: anchors, tag text, meta attributes and visible text.
"""

import re
import logging
from typing import List, Optional

from bs4 import BeautifulSoup, Comment
from bs4.builder import ParserRejectedMarkup


class ParseError(Exception):
    """Raised when markup cannot be parsed into a document."""
    pass


WHITESPACE = re.compile(r'\s+')

# Elements whose text is never shown to a reader
INVISIBLE_TAGS = ["script", "style", "noscript", "template"]


class HTMLDocument:
    """Read-only accessor over a parsed page."""

    def __init__(self, soup: BeautifulSoup):
        self.soup = soup
        self._visible_text: Optional[str] = None

    def anchor_hrefs(self) -> List[str]:
        """Every ``href`` of an ``<a>`` element, in document order."""
        return [a['href'].strip() for a in self.soup.find_all('a', href=True)]

    def text_of(self, tag: str) -> str:
        """Whitespace-normalized text of every ``tag`` element, space-joined."""
        parts = [element.get_text(' ', strip=True) for element in self.soup.find_all(tag)]
        return clean_text(' '.join(part for part in parts if part))

    def meta_content(self, name: str) -> Optional[str]:
        """``content`` attribute of ``<meta name=...>``, or None when absent."""
        meta = self.soup.find('meta', attrs={'name': re.compile(f'^{re.escape(name)}$', re.I)})
        if meta is None:
            return None
        return meta.get('content')

    def visible_text(self) -> str:
        """Text a reader would see, with scripts, styles and comments removed."""
        if self._visible_text is None:
            self._visible_text = clean_text(self.soup.get_text(' ', strip=True))
        return self._visible_text


class ContentParser:
    """Parses HTML with lxml into HTMLDocument objects."""

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def parse(self, html_content: str) -> HTMLDocument:
        """
        Parse HTML content.

        Args:
            html_content: Raw HTML content

        Returns:
            HTMLDocument over the cleaned tree

        Raises:
            ParseError: if the markup is not text or is rejected by the parser
        """
        if not isinstance(html_content, str):
            raise ParseError(f"Expected HTML text, got {type(html_content).__name__}")

        try:
            soup = BeautifulSoup(html_content, 'lxml')
        except ParserRejectedMarkup as e:
            raise ParseError(str(e)) from e

        # Remove script and style elements
        for element in soup(INVISIBLE_TAGS):
            element.decompose()

        # Remove comments
        for comment in soup.find_all(string=lambda text: isinstance(text, Comment)):
            comment.extract()

        return HTMLDocument(soup)


def clean_text(text: str) -> str:
    """Collapse runs of whitespace and trim."""
    if not text:
        return ""
    return WHITESPACE.sub(' ', text).strip()
