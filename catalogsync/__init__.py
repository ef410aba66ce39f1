"""CatalogSync: offline catalog reconciliation and feature engineering.

This package provides a batch pipeline that reconciles external product and
review datasets against an existing product catalog and derives the inputs
used by downstream recommendation services.

Modules:
    pipeline: Streaming readers, resolvers, mergers and feature stages
    storage: SQLite-backed catalog persistence
"""

__version__ = "0.1.0"
