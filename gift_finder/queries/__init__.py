"""Search term generation for Gift Finder."""

from gift_finder.queries.query_generator import FALLBACK_QUERIES, QueryGenerator, parse_queries

__all__ = ["FALLBACK_QUERIES", "QueryGenerator", "parse_queries"]
