"""Catalog persistence for the pipeline.

The store is the only component that touches the database; pipeline stages
read and write catalog documents exclusively through it.
"""

from catalogsync.storage.sqlite_store import CatalogStore, WriteResult, parse_db_url

__all__ = ["CatalogStore", "WriteResult", "parse_db_url"]
