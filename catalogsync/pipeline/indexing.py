"""In-memory lookup structures built in one pass over a dataset.

The indexes are frozen once built: group lists become tuples and maps are
wrapped in read-only proxies, so no stage can mutate them mid-run. Fan-out is
capped so memory stays bounded for very large inputs.
"""

import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import Callable, Dict, Iterable, Iterator, List, Mapping, Optional, Tuple, TypeVar

from catalogsync.pipeline.models import MetadataRecord, ReviewRecord

# Configure module logger
logger = logging.getLogger(__name__)

# Keyword index configuration
MIN_KEYWORD_LENGTH = 4  # only tokens longer than this are indexed
KEYWORDS_PER_TITLE = 5
MAX_KEYS_PER_KEYWORD = 500

T = TypeVar("T")


def normalize_title(title: str) -> str:
    """Lowercase and trim a title for exact lookups."""
    return (title or "").lower().strip()


def keyword_tokens(normalized_title: str) -> List[str]:
    """Whitespace tokens long enough to be useful as keywords."""
    return [word for word in normalized_title.split() if len(word) > MIN_KEYWORD_LENGTH]


def group_by_key(
    records: Iterable[T], key_fn: Callable[[T], Optional[str]]
) -> Dict[str, List[T]]:
    """Group records by key, preserving insertion order within each group.

    Records whose key is empty are dropped.
    """
    groups: Dict[str, List[T]] = {}
    for record in records:
        key = key_fn(record)
        if not key:
            continue
        groups.setdefault(key, []).append(record)
    return groups


def _freeze(groups: Dict[str, List[T]]) -> Mapping[str, Tuple[T, ...]]:
    return MappingProxyType({key: tuple(values) for key, values in groups.items()})


@dataclass(frozen=True)
class MetadataIndex:
    """Lookup structures over the metadata stream.

    Attributes:
        groups: parent key -> metadata rows, in file order.
        keywords: keyword -> parent keys whose title contains it (capped).
        titles: normalized title -> first parent key seen with that title.
        records: Rows indexed.
        skipped: Rows dropped for lacking a parent key.
    """

    groups: Mapping[str, Tuple[MetadataRecord, ...]]
    keywords: Mapping[str, Tuple[str, ...]]
    titles: Mapping[str, str]
    records: int = 0
    skipped: int = 0

    def __len__(self) -> int:
        return len(self.groups)

    def __contains__(self, key: str) -> bool:
        return key in self.groups

    def keys(self) -> Iterator[str]:
        return iter(self.groups)

    def first(self, key: str) -> Optional[MetadataRecord]:
        """The representative (first) metadata row for a key."""
        rows = self.groups.get(key)
        return rows[0] if rows else None


def build_metadata_index(rows: Iterable[dict]) -> MetadataIndex:
    """Build the metadata index from raw JSON rows in a single pass.

    Args:
        rows: Parsed JSON objects, typically a :class:`JsonlReader`.

    Returns:
        Frozen MetadataIndex.
    """
    groups: Dict[str, List[MetadataRecord]] = {}
    keywords: Dict[str, List[str]] = {}
    titles: Dict[str, str] = {}
    records = 0
    skipped = 0

    for raw in rows:
        record = MetadataRecord.from_raw(raw)
        if record is None:
            skipped += 1
            continue

        records += 1
        key = record.parent_key
        if key in groups:
            groups[key].append(record)
            continue

        # Only the first row of a group is indexed by title
        groups[key] = [record]
        normalized = normalize_title(record.title)
        if not normalized:
            continue

        titles.setdefault(normalized, key)
        for keyword in list(dict.fromkeys(keyword_tokens(normalized)))[:KEYWORDS_PER_TITLE]:
            keys = keywords.setdefault(keyword, [])
            if len(keys) < MAX_KEYS_PER_KEYWORD:
                keys.append(key)

    logger.info(
        f"Indexed {records:,} metadata rows into {len(groups):,} keys, "
        f"{len(titles):,} exact titles, {len(keywords):,} keywords",
        extra={"skipped": skipped},
    )

    return MetadataIndex(
        groups=_freeze(groups),
        keywords=_freeze(keywords),
        titles=MappingProxyType(titles),
        records=records,
        skipped=skipped,
    )


@dataclass(frozen=True)
class ReviewIndex:
    """Lookup structures over the review stream.

    Attributes:
        by_parent: parent key -> review rows, in file order.
        reviewer_keys: Distinct reviewer keys in first-seen order.
        records: Rows indexed.
        skipped: Rows dropped for lacking a parent or reviewer key.
    """

    by_parent: Mapping[str, Tuple[ReviewRecord, ...]]
    reviewer_keys: Tuple[str, ...]
    records: int = 0
    skipped: int = 0

    def __len__(self) -> int:
        return len(self.by_parent)

    def reviews_for(self, parent_key: str) -> Tuple[ReviewRecord, ...]:
        return self.by_parent.get(parent_key, ())


def build_review_index(rows: Iterable[dict]) -> ReviewIndex:
    """Build the review index from raw JSON rows in a single pass."""
    by_parent: Dict[str, List[ReviewRecord]] = {}
    reviewer_keys: Dict[str, None] = {}
    records = 0
    skipped = 0

    for raw in rows:
        record = ReviewRecord.from_raw(raw)
        if record is None:
            skipped += 1
            continue

        records += 1
        by_parent.setdefault(record.parent_key, []).append(record)
        reviewer_keys.setdefault(record.reviewer_key, None)

    logger.info(
        f"Indexed {records:,} reviews for {len(by_parent):,} products "
        f"from {len(reviewer_keys):,} reviewers",
        extra={"skipped": skipped},
    )

    return ReviewIndex(
        by_parent=_freeze(by_parent),
        reviewer_keys=tuple(reviewer_keys),
        records=records,
        skipped=skipped,
    )
