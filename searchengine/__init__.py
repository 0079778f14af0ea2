"""
Search Engine

A keyword-indexing web crawler with a ranked query engine over the index.
"""

__version__ = "1.0.0"
__description__ = "Crawls the web, links weighted keywords to webpages and answers ranked queries"
