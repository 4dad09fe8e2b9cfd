"""
searchbot

A crawling search engine: builds a keyword index from a web frontier and
serves keyword and phrase queries over HTTP.
"""

__version__ = "1.0.0"
__description__ = "Crawling keyword and phrase search engine"
