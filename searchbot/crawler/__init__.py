"""
Crawler core components.
"""

from .url_frontier import URLFrontier
from .fetcher import BaseFetcher, WebFetcher, BrowserFetcher, FetchError, create_fetcher
from .parser import ContentParser, HTMLDocument, ParseError
from .analyzer import ContentAnalyzer, PageAnalysis
from .worker import CrawlWorker
from .coordinator import CrawlCoordinator, IndexReadiness

__all__ = [
    'URLFrontier',
    'BaseFetcher', 'WebFetcher', 'BrowserFetcher', 'FetchError', 'create_fetcher',
    'ContentParser', 'HTMLDocument', 'ParseError',
    'ContentAnalyzer', 'PageAnalysis',
    'CrawlWorker',
    'CrawlCoordinator', 'IndexReadiness',
]
