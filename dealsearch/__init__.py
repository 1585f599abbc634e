"""
DealSearch - Marketplace search and relevance engine.

Example:
    >>> from dealsearch.domains.search import SearchEngine
    >>> engine = SearchEngine(store)
    >>> response = await engine.search({"q": "laptop", "type": "deals"})
"""

__version__ = "1.0.0"
__all__ = ["__version__"]
