"""Reviewer identity reconciliation, deduplicated review merge and top-up.

External reviewers are mapped to internal identities. Missing identities
are synthesized deterministically from the reviewer key, but only while the
run's identity quota has room; reviews of reviewers that cannot get an
identity are dropped for this run and reported.

Whenever an item's reviews are written, ``num_reviews`` and ``rating`` are
recomputed from the full review list.
"""

import logging
import uuid
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np

from catalogsync.exceptions import QuotaExceededError
from catalogsync.pipeline.batching import iter_item_batches
from catalogsync.pipeline.context import PipelineContext, StageReport
from catalogsync.pipeline.indexing import ReviewIndex
from catalogsync.pipeline.models import CatalogItem, Review, ReviewerIdentity, ReviewRecord
from catalogsync.storage import CatalogStore

# Configure module logger
logger = logging.getLogger(__name__)

IDENTITY_NAMESPACE = uuid.UUID("6f1c2a7e-3b7d-5c1e-9a55-0c7a1e4d2b90")
IDENTITY_EMAIL_DOMAIN = "placeholder.invalid"
IDENTITY_LOOKUP_CHUNK = 500  # keeps IN (...) lists under SQLite's parameter limit

RESOLVED_FILTER = {"external_key": {"$exists": True}}

# Run-scoped cache names
IDENTITY_CACHE = "identities_by_key"
DROPPED_KEYS_CACHE = "quota_dropped_keys"
FILL_POOL_CACHE = "fill_identities"

# Synthetic review text for top-up
SYNTHETIC_PHRASES = (
    "Fits as expected.",
    "Good quality for the price.",
    "Would buy again.",
    "Color matches the photos.",
    "Comfortable to wear all day.",
    "Shipping was quick.",
    "The material feels durable.",
    "Sizing runs slightly small.",
    "Looks great in person.",
    "Nice everyday piece.",
)
MIN_SYNTHETIC_RATING = 1
MAX_SYNTHETIC_RATING = 5


def synthesize_identity(external_key: str) -> ReviewerIdentity:
    """Build the deterministic identity for an external reviewer key."""
    return ReviewerIdentity(
        id=uuid.uuid5(IDENTITY_NAMESPACE, external_key).hex,
        external_key=external_key,
        name=f"External Reviewer {external_key[:8]}",
        email=f"reviewer_{external_key.lower()}@{IDENTITY_EMAIL_DOMAIN}",
    )


def recompute_aggregates(reviews: Sequence[Review]) -> Tuple[int, float]:
    """Full recomputation of ``(num_reviews, rating)`` from a review list."""
    if not reviews:
        return 0, 0.0
    mean = sum(review.rating for review in reviews) / len(reviews)
    return len(reviews), round(mean, 1)


def aggregates_stale(item: CatalogItem) -> bool:
    """True when the stored ``(num_reviews, rating)`` disagree with the reviews."""
    return (item.num_reviews, item.rating) != recompute_aggregates(item.reviews)


def review_patch(reviews: Sequence[Review]) -> Dict[str, object]:
    """Patch that writes a review list together with its aggregates."""
    num_reviews, rating = recompute_aggregates(reviews)
    return {
        "reviews": [review.model_dump(mode="json") for review in reviews],
        "num_reviews": num_reviews,
        "rating": rating,
    }


def _chunks(values: Sequence[str], size: int) -> Iterable[Sequence[str]]:
    for start in range(0, len(values), size):
        yield values[start:start + size]


def _lookup_identities(store: CatalogStore, keys: Sequence[str]) -> Dict[str, ReviewerIdentity]:
    found: Dict[str, ReviewerIdentity] = {}
    for chunk in _chunks(list(keys), IDENTITY_LOOKUP_CHUNK):
        for identity in store.find_identities({"external_key": {"$in": list(chunk)}}):
            found[identity.external_key] = identity
    return found


def reconcile_identities(
    store: CatalogStore,
    reviewer_keys: Iterable[str],
    context: PipelineContext,
    report: StageReport,
) -> Dict[str, ReviewerIdentity]:
    """Map reviewer keys to internal identities, creating missing ones.

    Existing identities are always reused. A missing identity is
    synthesized only while the quota has room; otherwise the key is
    remembered as dropped for the rest of the run.

    Args:
        store: Catalog store.
        reviewer_keys: External reviewer keys needed by the current batch.
        context: Run context; holds the quota and the key -> identity cache.
        report: Stage report receiving ``identities_created``,
            ``identity_conflicts`` and ``quota_dropped`` counters.

    Returns:
        The run-wide key -> identity mapping.
    """
    if context.quota is None:
        context.init_quota(store)

    known: Dict[str, ReviewerIdentity] = context.caches.setdefault(IDENTITY_CACHE, {})
    dropped: set = context.caches.setdefault(DROPPED_KEYS_CACHE, set())

    wanted = [key for key in dict.fromkeys(reviewer_keys) if key not in known and key not in dropped]
    if not wanted:
        return known

    # Best-effort existence check before creating anything
    known.update(_lookup_identities(store, wanted))
    missing = [key for key in wanted if key not in known]

    to_create: List[ReviewerIdentity] = []
    for key in missing:
        try:
            context.quota.reserve(key)
        except QuotaExceededError as e:
            dropped.add(key)
            report.bump("quota_dropped")
            logger.debug(e.message, extra=e.details)
            continue
        to_create.append(synthesize_identity(key))

    if not to_create:
        return known

    result = store.insert_identities(to_create)
    report.bump("identities_created", result.applied)
    if result.failed:
        # Conflicting identities are skipped; their slots go back to the quota
        context.quota.release(result.failed)
        report.bump("identity_conflicts", result.failed)

    created = _lookup_identities(store, [identity.external_key for identity in to_create])
    known.update(created)
    for identity in to_create:
        if identity.external_key not in created:
            dropped.add(identity.external_key)

    logger.info(
        f"Identities: {result.applied} created, {result.failed} conflicts, "
        f"{context.quota.used}/{context.quota.quota} quota used",
        extra={"identities_created": result.applied, "conflicts": result.failed},
    )
    return known


def merge_reviews(
    item: CatalogItem,
    records: Sequence[ReviewRecord],
    identities: Dict[str, ReviewerIdentity],
    now: datetime,
) -> Tuple[List[Review], int, int]:
    """Merge external reviews into an item's review list.

    A review is rejected when its ``(reviewer_id, comment)`` key already
    exists on the item or was staged earlier in this merge.

    Returns:
        ``(added, duplicates, dropped)`` where ``added`` holds the new
        reviews and ``dropped`` counts records whose reviewer has no identity.
    """
    seen = {review.dedup_key for review in item.reviews}
    added: List[Review] = []
    duplicates = 0
    dropped = 0

    for record in records:
        identity = identities.get(record.reviewer_key)
        if identity is None:
            dropped += 1
            continue

        review = Review(
            reviewer_id=identity.id,
            name=identity.name,
            rating=record.rating,
            comment=record.comment,
            created_at=record.timestamp or now,
        )
        if review.dedup_key in seen:
            duplicates += 1
            continue

        seen.add(review.dedup_key)
        added.append(review)

    return added, duplicates, dropped


def merge_external_reviews(
    store: CatalogStore,
    index: ReviewIndex,
    context: PipelineContext,
    after: Optional[int] = None,
) -> StageReport:
    """Attach deduplicated external reviews to resolved items.

    Identities are reconciled once per batch for all reviewers the batch
    needs. Aggregates are recomputed for every item that gains a review,
    and repaired on any other visited item whose stored values are stale.
    """
    report = context.start_stage("reviews")
    if context.quota is None:
        context.init_quota(store)

    for batch in iter_item_batches(store, RESOLVED_FILTER, context.settings.batch_size, after):
        pending = [(item, index.reviews_for(item.external_key)) for item in batch]

        identities = reconcile_identities(
            store,
            (record.reviewer_key for _, records in pending for record in records),
            context,
            report,
        )

        patches = []
        for item, records in pending:
            added: List[Review] = []
            if records:
                added, duplicates, dropped = merge_reviews(
                    item, records, identities, context.clock()
                )
                report.bump("duplicates", duplicates)
                report.bump("dropped_reviews", dropped)
                report.created += len(added)
            else:
                report.not_found += 1

            if added:
                patches.append((item.id, review_patch(item.reviews + added)))
            elif aggregates_stale(item):
                patches.append((item.id, review_patch(item.reviews)))
                report.bump("aggregates_repaired")
            elif records:
                report.skipped += 1

        if patches:
            report.add_write(store.bulk_apply_patches(patches))
        report.last_cursor = batch[-1].seq

        logger.info(
            f"Review batch done: {report.created} reviews added to {report.updated} items, "
            f"{report.extra.get('duplicates', 0)} duplicates, "
            f"{report.extra.get('dropped_reviews', 0)} dropped",
            extra={"cursor": report.last_cursor, "failed": report.failed},
        )

    return report


def load_fill_pool(store: CatalogStore, context: PipelineContext) -> List[ReviewerIdentity]:
    """Identities available for review top-up, loaded once per run."""
    pool = context.caches.get(FILL_POOL_CACHE)
    if pool is None:
        pool = store.find_identities()
        context.caches[FILL_POOL_CACHE] = pool
        logger.info(f"Loaded {len(pool):,} identities for review top-up")
    return pool


def synthetic_comment(rng: np.random.Generator) -> str:
    count = int(rng.integers(1, 4))
    picks = rng.choice(len(SYNTHETIC_PHRASES), size=count, replace=False)
    return " ".join(SYNTHETIC_PHRASES[i] for i in sorted(picks))


def fill_reviews_to_target(
    item: CatalogItem,
    identities: Sequence[ReviewerIdentity],
    rng: np.random.Generator,
    now: datetime,
) -> Tuple[List[Review], int]:
    """Top up an item's reviews until ``review_target`` reviews exist.

    Only identities that have not reviewed the item yet are used, so each
    added review has a unique dedup key. When identities run out the item
    is left short.

    Args:
        item: Item whose ``review_target`` is the target.
        identities: Candidate reviewer identities.
        rng: Random source for reviewer choice, rating and comment.
        now: Timestamp for the new reviews.

    Returns:
        ``(added, shortfall)``; both empty/zero when the target is met.
    """
    needed = item.review_target - len(item.reviews)
    if needed <= 0:
        return [], 0

    used = {review.reviewer_id for review in item.reviews}
    candidates = [identity for identity in identities if identity.id not in used]
    count = min(needed, len(candidates))

    added: List[Review] = []
    if count:
        for position in rng.choice(len(candidates), size=count, replace=False):
            identity = candidates[int(position)]
            added.append(
                Review(
                    reviewer_id=identity.id,
                    name=identity.name,
                    rating=float(rng.integers(MIN_SYNTHETIC_RATING, MAX_SYNTHETIC_RATING + 1)),
                    comment=synthetic_comment(rng),
                    created_at=now,
                )
            )

    return added, needed - count
