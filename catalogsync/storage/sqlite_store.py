"""SQLite-backed catalog store.

Catalog items and reviewer identities are stored as JSON documents, one row
each. Every row gets an AUTOINCREMENT ``seq`` which is strictly increasing
and never reused, so it doubles as the resume cursor for batch iteration.

Writes use continue-on-error semantics: a failing record is logged and
counted in the returned :class:`WriteResult`, and the rest of the batch is
still applied.
"""

import json
import logging
import re
import sqlite3
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from pydantic import ValidationError

from catalogsync.exceptions import ConnectionFailureError, PersistenceConflictError
from catalogsync.pipeline.models import CatalogItem, ReviewerIdentity

# Configure module logger
logger = logging.getLogger(__name__)

ITEM_TABLE = "items"
IDENTITY_TABLE = "identities"

# Columns that live outside the JSON document
_COLUMN_FIELDS = {"id", "seq"}
_FIELD_NAME = re.compile(r"^[a-z_][a-z0-9_]*$")

Filter = Optional[Dict[str, Any]]
Patch = Tuple[str, Dict[str, Any]]


@dataclass
class WriteResult:
    """Outcome of an unordered bulk write."""

    applied: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)


def parse_db_url(url: str) -> str:
    """Turn a connection string into a sqlite3 database argument.

    Accepts ``sqlite:///relative/or/absolute/path``, ``sqlite://:memory:``,
    ``:memory:`` and bare file paths.
    """
    if url.startswith("sqlite://"):
        target = url[len("sqlite://"):]
        if target in ("", ":memory:", "/:memory:"):
            return ":memory:"
        return target[1:] if target.startswith("/") else target
    return url


def _field_expr(name: str) -> str:
    if name in _COLUMN_FIELDS:
        return name
    if not _FIELD_NAME.match(name):
        raise ValueError(f"Invalid filter field: {name!r}")
    return f"json_extract(doc, '$.{name}')"


def _compile_filter(filter_: Filter) -> Tuple[str, List[Any]]:
    """Compile a document filter into a SQL WHERE fragment.

    Supported conditions per top-level field: a literal (equality), ``None``
    (missing or null), ``{"$in": [...]}``, ``{"$ne": value}``,
    ``{"$exists": bool}`` and ``{"$gt": value}``.
    """
    if not filter_:
        return "1 = 1", []

    clauses: List[str] = []
    params: List[Any] = []
    for name, condition in filter_.items():
        expr = _field_expr(name)
        if condition is None:
            clauses.append(f"{expr} IS NULL")
        elif isinstance(condition, dict):
            for op, value in condition.items():
                if op == "$in":
                    values = list(value)
                    if not values:
                        clauses.append("0 = 1")
                        continue
                    placeholders = ", ".join("?" for _ in values)
                    clauses.append(f"{expr} IN ({placeholders})")
                    params.extend(values)
                elif op == "$ne":
                    clauses.append(f"({expr} IS NULL OR {expr} != ?)")
                    params.append(value)
                elif op == "$exists":
                    clauses.append(f"{expr} IS {'NOT ' if value else ''}NULL")
                elif op == "$gt":
                    clauses.append(f"{expr} > ?")
                    params.append(value)
                else:
                    raise ValueError(f"Unsupported filter operator: {op}")
        else:
            clauses.append(f"{expr} = ?")
            params.append(condition)

    return " AND ".join(clauses), params


class CatalogStore:
    """Document store for catalog items and reviewer identities.

    Example:
        >>> with CatalogStore.open("sqlite:///catalog.db") as store:
        ...     store.count_items({"external_key": None})
    """

    def __init__(self, connection: sqlite3.Connection, url: str):
        self._conn = connection
        self.url = url

    @classmethod
    def open(cls, url: str) -> "CatalogStore":
        """Connect to the store and make sure the schema exists.

        Raises:
            ConnectionFailureError: If the database cannot be opened.
        """
        database = parse_db_url(url)
        try:
            if database != ":memory:":
                Path(database).parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(database)
            conn.row_factory = sqlite3.Row
            store = cls(conn, url)
            store.ensure_schema()
        except (sqlite3.Error, OSError) as e:
            raise ConnectionFailureError(url, e) from e

        logger.info(f"Opened catalog store at {url}")
        return store

    def close(self) -> None:
        """Close the connection. Safe to call more than once."""
        try:
            self._conn.close()
        except sqlite3.Error as e:
            logger.warning(f"Error closing catalog store: {e}")

    def __enter__(self) -> "CatalogStore":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def ensure_schema(self) -> None:
        """Create the item and identity tables if they do not exist."""
        self._conn.executescript(
            f"""
            CREATE TABLE IF NOT EXISTS {ITEM_TABLE} (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                id TEXT NOT NULL UNIQUE,
                doc TEXT NOT NULL
            );
            CREATE INDEX IF NOT EXISTS idx_items_external_key
            ON {ITEM_TABLE} (json_extract(doc, '$.external_key'));

            CREATE TABLE IF NOT EXISTS {IDENTITY_TABLE} (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                id TEXT NOT NULL UNIQUE,
                external_key TEXT UNIQUE,
                email TEXT NOT NULL UNIQUE,
                doc TEXT NOT NULL
            );
            """
        )
        self._conn.commit()

    def _query(self, sql: str, params: Sequence[Any] = ()) -> List[sqlite3.Row]:
        try:
            return self._conn.execute(sql, params).fetchall()
        except (sqlite3.OperationalError, sqlite3.ProgrammingError) as e:
            raise ConnectionFailureError(self.url, e) from e

    # ---------------------- ITEMS ---------------------- #

    def find_items(
        self,
        filter_: Filter = None,
        after: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> List[CatalogItem]:
        """Find items matching a filter, ordered by cursor key.

        Args:
            filter_: Document filter (see module docs for operators).
            after: Only return items whose ``seq`` is greater than this.
            limit: Maximum number of items to return.

        Returns:
            Items in ascending ``seq`` order, with ``seq`` populated.
        """
        where, params = _compile_filter(filter_)
        if after is not None:
            where += " AND seq > ?"
            params.append(after)

        sql = f"SELECT seq, doc FROM {ITEM_TABLE} WHERE {where} ORDER BY seq"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)

        items = []
        for row in self._query(sql, params):
            item = CatalogItem.model_validate(json.loads(row["doc"]))
            item.seq = row["seq"]
            items.append(item)
        return items

    def find_item(self, item_id: str) -> Optional[CatalogItem]:
        """Find one item by id, or None."""
        items = self.find_items({"id": item_id}, limit=1)
        return items[0] if items else None

    def count_items(self, filter_: Filter = None) -> int:
        where, params = _compile_filter(filter_)
        rows = self._query(f"SELECT COUNT(*) AS n FROM {ITEM_TABLE} WHERE {where}", params)
        return int(rows[0]["n"])

    def project_items(
        self, fields: Sequence[str], filter_: Filter = None
    ) -> List[Dict[str, Any]]:
        """Fetch only the given top-level fields of matching items.

        Keeps memory low when a stage needs a light view of the whole catalog.
        Missing fields come back as None.
        """
        where, params = _compile_filter(filter_)
        cursor = self._conn.cursor()
        try:
            cursor.execute(
                f"SELECT id, doc FROM {ITEM_TABLE} WHERE {where} ORDER BY seq", params
            )
        except (sqlite3.OperationalError, sqlite3.ProgrammingError) as e:
            raise ConnectionFailureError(self.url, e) from e

        projected = []
        for row in cursor:
            doc = json.loads(row["doc"])
            doc["id"] = row["id"]
            projected.append({name: doc.get(name) for name in fields})
        return projected

    def insert_items(self, items: Iterable[CatalogItem]) -> WriteResult:
        """Insert items, skipping (and counting) conflicting ones."""
        result = WriteResult()
        for item in items:
            try:
                self._conn.execute(
                    f"INSERT INTO {ITEM_TABLE} (id, doc) VALUES (?, ?)",
                    (item.id, json.dumps(item.to_document())),
                )
                result.applied += 1
            except sqlite3.IntegrityError as e:
                conflict = PersistenceConflictError(ITEM_TABLE, item.id, e)
                logger.warning(conflict.message)
                result.failed += 1
                result.errors.append(conflict.message)
        self._commit()
        return result

    def bulk_apply_patches(self, patches: Iterable[Patch]) -> WriteResult:
        """Apply ``(id, patch)`` pairs, each patch replacing top-level fields.

        Patches are unordered and continue-on-error: a missing item, an
        invalid document or an attempt to reassign ``external_key`` fails
        that record only.
        """
        result = WriteResult()
        for item_id, patch in patches:
            try:
                self._apply_patch(item_id, patch)
                result.applied += 1
            except (PersistenceConflictError, KeyError, ValidationError, sqlite3.IntegrityError) as e:
                message = getattr(e, "message", None) or f"Failed to patch item '{item_id}': {e}"
                logger.warning(message, extra={"item_id": item_id})
                result.failed += 1
                result.errors.append(message)
        self._commit()
        return result

    def _apply_patch(self, item_id: str, patch: Dict[str, Any]) -> None:
        rows = self._query(f"SELECT doc FROM {ITEM_TABLE} WHERE id = ?", (item_id,))
        if not rows:
            raise KeyError(f"Item '{item_id}' not found")

        doc = json.loads(rows[0]["doc"])
        current_key = doc.get("external_key")
        new_key = patch.get("external_key", current_key)
        if current_key is not None and new_key != current_key:
            raise PersistenceConflictError(
                ITEM_TABLE,
                item_id,
                ValueError(f"external_key already set to '{current_key}'"),
            )

        doc.update(patch)
        # Round-trip through the model so stored documents stay well-formed
        document = CatalogItem.model_validate(doc).to_document()
        self._conn.execute(
            f"UPDATE {ITEM_TABLE} SET doc = ? WHERE id = ?",
            (json.dumps(document), item_id),
        )

    # ---------------------- IDENTITIES ---------------------- #

    def find_identities(
        self, filter_: Filter = None, limit: Optional[int] = None
    ) -> List[ReviewerIdentity]:
        where, params = _compile_filter(filter_)
        sql = f"SELECT doc FROM {IDENTITY_TABLE} WHERE {where} ORDER BY seq"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        return [
            ReviewerIdentity.model_validate(json.loads(row["doc"]))
            for row in self._query(sql, params)
        ]

    def count_identities(self, filter_: Filter = None) -> int:
        where, params = _compile_filter(filter_)
        rows = self._query(
            f"SELECT COUNT(*) AS n FROM {IDENTITY_TABLE} WHERE {where}", params
        )
        return int(rows[0]["n"])

    def insert_identities(self, identities: Iterable[ReviewerIdentity]) -> WriteResult:
        """Insert identities; duplicate id, key or email conflicts are skipped."""
        result = WriteResult()
        for identity in identities:
            try:
                self._conn.execute(
                    f"INSERT INTO {IDENTITY_TABLE} (id, external_key, email, doc) "
                    f"VALUES (?, ?, ?, ?)",
                    (
                        identity.id,
                        identity.external_key,
                        identity.email,
                        json.dumps(identity.to_document()),
                    ),
                )
                result.applied += 1
            except sqlite3.IntegrityError as e:
                conflict = PersistenceConflictError(IDENTITY_TABLE, identity.id, e)
                logger.warning(conflict.message)
                result.failed += 1
                result.errors.append(conflict.message)
        self._commit()
        return result

    def _commit(self) -> None:
        try:
            self._conn.commit()
        except (sqlite3.OperationalError, sqlite3.ProgrammingError) as e:
            raise ConnectionFailureError(self.url, e) from e
