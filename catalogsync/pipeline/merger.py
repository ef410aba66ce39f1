"""Idempotent enrichment of resolved catalog items from external metadata.

Each field is governed by one :class:`FieldRule`. Rules are evaluated in
order against a typed item snapshot and only contribute to the patch when
they would change the stored value, so rerunning the stage produces empty
patches.

External rating figures land in ``external_rating`` and ``review_target``;
the item's own ``rating`` and ``num_reviews`` belong to its review list.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

from catalogsync.pipeline.batching import iter_item_batches
from catalogsync.pipeline.context import PipelineContext, StageReport
from catalogsync.pipeline.indexing import MetadataIndex
from catalogsync.pipeline.models import CatalogItem, MetadataRecord
from catalogsync.storage import CatalogStore

# Configure module logger
logger = logging.getLogger(__name__)

# Merge rules
FILL_IF_EMPTY = "fill_if_empty"
AUTHORITATIVE = "authoritative"
UNION = "union"

NO_DESCRIPTION = "No description"
RESOLVED_FILTER = {"external_key": {"$exists": True}}


def _is_empty(value: Any, placeholders: Tuple[Any, ...] = ()) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip() or value in placeholders
    if isinstance(value, (list, tuple, dict)):
        return len(value) == 0
    return value in placeholders


def _has_value(value: Any) -> bool:
    return not _is_empty(value)


def _positive(value: Any) -> bool:
    return value is not None and value > 0


@dataclass(frozen=True)
class FieldRule:
    """How one catalog field is filled from a metadata attribute.

    Attributes:
        field: CatalogItem attribute to patch.
        source: MetadataRecord attribute to read.
        rule: One of FILL_IF_EMPTY, AUTHORITATIVE or UNION.
        placeholders: Stored values that count as empty.
        accept: Optional predicate the incoming value must satisfy.
    """

    field: str
    source: str
    rule: str
    placeholders: Tuple[Any, ...] = ()
    accept: Optional[Callable[[Any], bool]] = None

    def apply(self, current: Any, incoming: Any) -> Tuple[bool, Any]:
        """Return ``(changed, value)`` for this rule."""
        if not _has_value(incoming):
            return False, current
        if self.accept is not None and not self.accept(incoming):
            return False, current

        if self.rule == FILL_IF_EMPTY:
            if _is_empty(current, self.placeholders) and incoming != current:
                return True, incoming
            return False, current

        if self.rule == AUTHORITATIVE:
            return incoming != current, incoming

        if self.rule == UNION:
            merged = list(dict.fromkeys(list(current or []) + list(incoming)))
            return merged != list(current or []), merged

        raise ValueError(f"Unknown merge rule: {self.rule}")


ENRICHMENT_RULES: Tuple[FieldRule, ...] = (
    FieldRule("name", "title", FILL_IF_EMPTY),
    FieldRule("external_rating", "average_rating", AUTHORITATIVE, accept=_positive),
    FieldRule("review_target", "rating_number", AUTHORITATIVE, accept=_positive),
    FieldRule("price", "price", AUTHORITATIVE, accept=_positive),
    FieldRule("description", "description", FILL_IF_EMPTY, placeholders=(NO_DESCRIPTION,)),
    FieldRule("images", "images", UNION),
    FieldRule("brand", "store", FILL_IF_EMPTY),
    FieldRule("category", "category", FILL_IF_EMPTY),
)


def compute_patch(
    item: CatalogItem,
    meta: MetadataRecord,
    rules: Tuple[FieldRule, ...] = ENRICHMENT_RULES,
) -> Dict[str, Any]:
    """Compute the enrichment patch for one item.

    Args:
        item: Current item snapshot.
        meta: Matched metadata row.
        rules: Ordered field rules.

    Returns:
        Field -> new value, containing only fields that change. Empty when
        the item is already enriched.
    """
    patch: Dict[str, Any] = {}
    for rule in rules:
        changed, value = rule.apply(getattr(item, rule.field), getattr(meta, rule.source))
        if changed:
            patch[rule.field] = value
    return patch


def enrich_catalog(
    store: CatalogStore,
    index: MetadataIndex,
    context: PipelineContext,
    after: Optional[int] = None,
) -> StageReport:
    """Fill resolved catalog items from their matched metadata.

    Items whose key has no metadata are counted as ``not_found`` and items
    with an empty patch as ``skipped``.
    """
    report = context.start_stage("enrich")
    total = store.count_items(RESOLVED_FILTER)
    logger.info(f"Enriching up to {total:,} resolved items")

    for batch in iter_item_batches(store, RESOLVED_FILTER, context.settings.batch_size, after):
        patches = []
        for item in batch:
            meta = index.first(item.external_key)
            if meta is None:
                report.not_found += 1
                continue

            patch = compute_patch(item, meta)
            if not patch:
                report.skipped += 1
                continue

            patches.append((item.id, patch))
            for name in patch:
                report.bump(f"field_{name}")

        if patches:
            report.add_write(store.bulk_apply_patches(patches))
        report.last_cursor = batch[-1].seq

        logger.info(
            f"Enrich batch done: {report.updated} updated, {report.skipped} skipped, "
            f"{report.not_found} without metadata",
            extra={"cursor": report.last_cursor, "failed": report.failed},
        )

    return report
