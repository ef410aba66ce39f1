"""Batch pipeline stages for CatalogSync.

This module contains the streaming dataset reader, the indexing and fuzzy
resolution logic that links catalog items to external records, the
enrichment and review reconciliation stages, and the feature and variant
generators that prepare catalog items for recommendation.
"""
