"""
Search over the crawled index.

Plain terms are answered from stored keyword ranks. Quoted phrases are
verified live: candidate pages are selected by the first plain term appearing
in their URL, re-fetched, and ranked by how often the phrases occur.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Sequence

from ..crawler.coordinator import CrawlCoordinator
from ..storage.database import DatabaseManager


class ValidationError(Exception):
    """The query itself is unacceptable; reported to the caller as a 400."""
    pass


class IndexNotReadyError(Exception):
    """The index is still being built; the caller should retry later."""
    pass


class SearchMode(Enum):
    OR = "or"
    AND = "and"


@dataclass
class ParsedQuery:
    """Keywords split into plain terms and quoted phrases, order preserved."""
    terms: List[str]
    phrases: List[str]


def is_phrase(keyword: str) -> bool:
    """A keyword wrapped in exactly one pair of double quotes."""
    return (
        len(keyword) >= 2
        and keyword.startswith('"')
        and keyword.endswith('"')
        and '"' not in keyword[1:-1]
    )


def parse_query(keywords: Sequence[str]) -> ParsedQuery:
    """
    Partition keywords into plain terms and phrases.

    Raises:
        ValidationError: if phrases are present without any plain term
    """
    terms: List[str] = []
    phrases: List[str] = []
    for keyword in keywords:
        if is_phrase(keyword):
            phrase = keyword[1:-1].strip()
            if phrase:
                phrases.append(phrase)
        elif keyword:
            terms.append(keyword)

    if phrases and not terms:
        raise ValidationError("A phrase search needs at least one unquoted keyword")
    return ParsedQuery(terms=terms, phrases=phrases)


class SearchEngine:
    """Answers keyword and phrase queries once the coordinator has opened the index."""

    def __init__(self, database: DatabaseManager, coordinator: CrawlCoordinator):
        self.database = database
        self.coordinator = coordinator
        self.logger = logging.getLogger(__name__)

    async def search(self, keywords: Sequence[str], mode: SearchMode = SearchMode.OR) -> List[Dict]:
        """
        Run a query and return ``{url, description, rank}`` rows, best first.

        Raises:
            IndexNotReadyError: while the index is still being built
            ValidationError: for phrases without an anchor term
            StorageError: when the index cannot be read
        """
        if self.coordinator.is_building:
            raise IndexNotReadyError("Index is being built, please retry later")

        query = parse_query(keywords)
        match_all = mode is SearchMode.AND

        if query.phrases:
            results = await self.phrase_search(query, match_all)
        else:
            results = await self.database.search_keywords(query.terms, match_all)

        self.logger.info(
            f"Search terms={query.terms} phrases={query.phrases} mode={mode.value}: "
            f"{len(results)} results"
        )
        return results

    async def phrase_search(self, query: ParsedQuery, match_all: bool) -> List[Dict]:
        """Verify phrases on every known URL containing the first plain term."""
        positions = await self.database.positions_matching(query.terms[0])
        if not positions:
            return []

        self.logger.info(
            f"Verifying {len(query.phrases)} phrases on {len(positions)} candidate pages"
        )
        hits = await self.coordinator.verify_phrases(positions, query.phrases, match_all)
        hits = [hit for hit in hits if hit is not None]
        if not hits:
            return []

        descriptions = await self.database.descriptions_for(hit.url for hit in hits)
        results = [
            {'url': hit.url, 'description': descriptions.get(hit.url) or '', 'rank': hit.rank}
            for hit in hits
        ]
        results.sort(key=lambda row: row['rank'], reverse=True)
        return results
