"""API blueprints for the media indexer."""

from mediaindex.api.indexer import indexer_bp

__all__ = ['indexer_bp']
