"""
Content analysis: outbound links, keywords, keyword ranks and a description.

Keyword selection is a greedy, order-sensitive fill. The keyword meta tag is
read first; only if it supplies fewer than ``keyword_limit`` terms are tokens
taken from the title and then from h1 through h6, re-capping after each source.
"""

import re
import string
import logging
from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Optional
from urllib.parse import urldefrag, urljoin, urlparse, urlunparse

from .parser import ContentParser, HTMLDocument, clean_text


MIN_KEYWORD_LENGTH = 3

HEADING_TAGS = ['title', 'h1', 'h2', 'h3', 'h4', 'h5', 'h6']


@dataclass
class PageAnalysis:
    """Indexing signals extracted from one page."""
    url: str
    links: List[str] = field(default_factory=list)
    keywords: List[str] = field(default_factory=list)
    ranks: List[int] = field(default_factory=list)
    description: str = ""


def occurrence_pattern(term: str) -> re.Pattern:
    """
    Case-insensitive whole-word pattern matching ``term`` literally.

    Word edges are checked with lookarounds rather than ``\\b`` so terms that
    start or end with punctuation (``c++``, ``.net``) still match.
    """
    words = [re.escape(word) for word in term.split()]
    return re.compile(r'(?<!\w)' + r'\s+'.join(words) + r'(?!\w)', re.IGNORECASE)


def count_occurrences(text: Optional[str], term: str) -> int:
    """Number of whole-word, case-insensitive occurrences of ``term`` in ``text``."""
    if not text or not term.strip():
        return 0
    return len(occurrence_pattern(term).findall(text))


def meta_keyword_terms(document: HTMLDocument) -> List[str]:
    """Comma-separated terms of the keyword meta tag."""
    content = document.meta_content('keywords')
    if not content:
        return []
    terms = [clean_text(term).lower() for term in content.split(',')]
    return [term for term in terms if len(term) >= MIN_KEYWORD_LENGTH]


def tag_tokens(tag: str) -> Callable[[HTMLDocument], List[str]]:
    """Extractor returning the whitespace-separated tokens of ``tag`` text."""
    def extract(document: HTMLDocument) -> List[str]:
        tokens = (token.strip(string.punctuation).lower()
                  for token in document.text_of(tag).split())
        return [token for token in tokens if len(token) >= MIN_KEYWORD_LENGTH]
    extract.__name__ = f"{tag}_tokens"
    return extract


# Ordered keyword sources; later ones only run while earlier ones under-supply.
KEYWORD_SOURCES = [meta_keyword_terms] + [tag_tokens(tag) for tag in HEADING_TAGS]


def select_keywords(document: HTMLDocument, limit: int,
                    sources: Iterable[Callable[[HTMLDocument], List[str]]] = KEYWORD_SOURCES) -> List[str]:
    """Fill up to ``limit`` distinct keywords from ``sources`` in order."""
    keywords: List[str] = []
    for source in sources:
        if len(keywords) >= limit:
            break
        for term in source(document):
            if term not in keywords:
                keywords.append(term)
        keywords = keywords[:limit]
    return keywords


def rank_keywords(document: HTMLDocument, keywords: List[str]) -> List[int]:
    """Occurrences in the visible text plus occurrences in the keyword meta tag."""
    text = document.visible_text()
    meta_keywords = document.meta_content('keywords')
    return [
        count_occurrences(text, keyword) + count_occurrences(meta_keywords, keyword)
        for keyword in keywords
    ]


def build_description(document: HTMLDocument, max_length: int) -> str:
    """Meta description, or title and headings joined until ``max_length`` is reached."""
    meta_description = clean_text(document.meta_content('description') or '')
    if meta_description:
        return meta_description[:max_length]

    description = ""
    for tag in HEADING_TAGS:
        text = document.text_of(tag)
        if not text:
            continue
        description = f"{description} {text}" if description else text
        if len(description) >= max_length:
            return description[:max_length]
    return description


def normalize_link(href: str, base_url: str) -> Optional[str]:
    """Absolute, fragment-free http(s) URL for ``href``, or None if unusable."""
    href, _ = urldefrag(href.strip())
    if not href:
        return None
    try:
        parsed = urlparse(urljoin(base_url, href))
    except ValueError:
        return None

    if parsed.scheme not in ('http', 'https') or not parsed.netloc:
        return None

    return urlunparse((
        parsed.scheme,
        parsed.netloc.lower(),
        parsed.path or '/',
        parsed.params,
        parsed.query,
        ''
    ))


def extract_links(document: HTMLDocument, base_url: str, max_links: int) -> List[str]:
    """Deduplicated outbound links in document order, capped at ``max_links``."""
    links: List[str] = []
    seen = set()
    for href in document.anchor_hrefs():
        if len(links) >= max_links:
            break
        link = normalize_link(href, base_url)
        if link and link not in seen:
            seen.add(link)
            links.append(link)
    return links


class ContentAnalyzer:
    """Turns fetched HTML into a PageAnalysis."""

    def __init__(self, keyword_limit: int = 10, description_length: int = 200,
                 max_links_per_page: int = 50, parser: Optional[ContentParser] = None):
        self.keyword_limit = keyword_limit
        self.description_length = description_length
        self.max_links_per_page = max_links_per_page
        self.parser = parser or ContentParser()
        self.logger = logging.getLogger(__name__)

    def analyze(self, html: str, source_url: str) -> PageAnalysis:
        """
        Extract links, ranked keywords and a description from ``html``.

        Raises:
            ParseError: if the markup cannot be parsed
        """
        document = self.parser.parse(html)

        keywords = select_keywords(document, self.keyword_limit)
        analysis = PageAnalysis(
            url=source_url,
            links=extract_links(document, source_url, self.max_links_per_page),
            keywords=keywords,
            ranks=rank_keywords(document, keywords),
            description=build_description(document, self.description_length),
        )

        self.logger.debug(
            f"Analyzed {source_url}: {len(analysis.keywords)} keywords, {len(analysis.links)} links"
        )
        return analysis
