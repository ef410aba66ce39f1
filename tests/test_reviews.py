"""Tests for identity reconciliation, review dedup and top-up."""

from dataclasses import replace
from datetime import datetime, timezone

import numpy as np
import pytest

from catalogsync.pipeline.context import PipelineContext
from catalogsync.pipeline.indexing import build_review_index
from catalogsync.pipeline.models import CatalogItem, Review, ReviewerIdentity, ReviewRecord
from catalogsync.pipeline.reviews import (
    aggregates_stale,
    fill_reviews_to_target,
    merge_external_reviews,
    merge_reviews,
    recompute_aggregates,
    reconcile_identities,
    synthesize_identity,
)
from catalogsync.storage import CatalogStore

NOW = datetime(2024, 1, 1, tzinfo=timezone.utc)


def review(key: str, user: str, text: str = "", rating: float = 5.0, title: str = "") -> dict:
    return {
        "parent_asin": key,
        "user_id": user,
        "text": text,
        "title": title,
        "rating": rating,
        "timestamp": 1700000000000,
    }


def assert_aggregates_hold(item: CatalogItem) -> None:
    assert item.num_reviews == len(item.reviews)
    if item.reviews:
        mean = sum(r.rating for r in item.reviews) / len(item.reviews)
        assert item.rating == round(mean, 1)
    keys = [r.dedup_key for r in item.reviews]
    assert len(keys) == len(set(keys))


def test_synthesized_identity_is_deterministic() -> None:
    first = synthesize_identity("AGKHLEW2SOWHNMFQIJGBECAF7INQ")
    second = synthesize_identity("AGKHLEW2SOWHNMFQIJGBECAF7INQ")

    assert first == second
    assert first.name == "External Reviewer AGKHLEW2"
    assert first.email == "reviewer_agkhlew2sowhnmfqijgbecaf7inq@placeholder.invalid"
    assert len(first.id) == 32
    assert synthesize_identity("OTHER").id != first.id


def test_recompute_aggregates() -> None:
    reviews = [Review(reviewer_id=str(i), rating=r) for i, r in enumerate([5, 4, 4])]

    assert recompute_aggregates(reviews) == (3, 4.3)
    assert recompute_aggregates([]) == (0, 0.0)


def test_merge_reviews_deduplicates() -> None:
    identities = {"U1": synthesize_identity("U1"), "U2": synthesize_identity("U2")}
    existing = Review(reviewer_id=identities["U1"].id, rating=4, comment="Great")
    item = CatalogItem(id="a", reviews=[existing], num_reviews=1, rating=4.0)
    records = [
        ReviewRecord.from_raw(review("K1", "U1", "Great")),
        ReviewRecord.from_raw(review("K1", "U2", "Fine")),
        ReviewRecord.from_raw(review("K1", "U2", "Fine")),
        ReviewRecord.from_raw(review("K1", "U2", title="Different text")),
        ReviewRecord.from_raw(review("K1", "U9", "Unknown reviewer")),
    ]

    added, duplicates, dropped = merge_reviews(item, records, identities, NOW)

    assert [r.comment for r in added] == ["Fine", "Different text"]
    assert duplicates == 2
    assert dropped == 1
    assert added[0].name == "External Reviewer U2"


def test_merge_external_reviews_keeps_aggregates(
    store: CatalogStore, context: PipelineContext
) -> None:
    store.insert_items([
        CatalogItem(id="a", external_key="K1", num_reviews=40, rating=4.9),
        CatalogItem(id="b", external_key="K2"),
        CatalogItem(id="c", external_key="K3"),
    ])
    index = build_review_index([
        review("K1", "U1", "Great", 5),
        review("K1", "U2", "Bad", 2),
        review("K1", "U1", "Great", 5),
        review("K2", "U1", title="Solid", rating=4),
    ])

    report = merge_external_reviews(store, index, context)

    a, b = store.find_item("a"), store.find_item("b")
    assert len(a.reviews) == 2
    assert a.rating == 3.5
    assert b.reviews[0].comment == "Solid"
    assert_aggregates_hold(a)
    assert_aggregates_hold(b)
    assert report.created == 3
    assert report.updated == 2
    assert report.not_found == 1
    assert report.extra["duplicates"] == 1
    assert report.extra["identities_created"] == 2
    assert store.count_identities() == 2


def test_merge_external_reviews_rerun_adds_nothing(
    store: CatalogStore, settings
) -> None:
    store.insert_items([CatalogItem(id="a", external_key="K1")])
    index = build_review_index([review("K1", "U1", "Great"), review("K1", "U2", "Fine")])
    merge_external_reviews(store, index, PipelineContext.create(settings))

    report = merge_external_reviews(store, index, PipelineContext.create(settings))

    assert report.created == 0
    assert report.updated == 0
    assert report.skipped == 1
    assert report.extra["duplicates"] == 2
    assert len(store.find_item("a").reviews) == 2
    assert store.count_identities() == 2


def test_merge_external_reviews_repairs_stale_aggregates(
    store: CatalogStore, context: PipelineContext
) -> None:
    """Items visited without new reviews still end with derived aggregates."""
    identity = synthesize_identity("U1")
    existing = Review(reviewer_id=identity.id, rating=4, comment="Great")
    store.insert_items([
        CatalogItem(id="none", external_key="K1", num_reviews=120, rating=4.6),
        CatalogItem(id="dup", external_key="K2", reviews=[existing], num_reviews=31, rating=4.6),
        CatalogItem(id="ok", external_key="K3", reviews=[existing], num_reviews=1, rating=4.0),
    ])
    store.insert_identities([identity])
    index = build_review_index([review("K2", "U1", "Great", 4), review("K3", "U1", "Great", 4)])

    report = merge_external_reviews(store, index, context)

    none, dup, ok = (store.find_item(i) for i in ("none", "dup", "ok"))
    assert (none.num_reviews, none.rating) == (0, 0.0)
    assert (dup.num_reviews, dup.rating) == (1, 4.0)
    for item in (none, dup, ok):
        assert_aggregates_hold(item)
        assert not aggregates_stale(item)
    assert report.created == 0
    assert report.updated == 2
    assert report.not_found == 1
    assert report.skipped == 1
    assert report.extra["aggregates_repaired"] == 2
    assert report.extra["duplicates"] == 2


def test_quota_holds_across_runs(store: CatalogStore, settings) -> None:
    """Reviews of reviewers beyond the quota are dropped, every run."""
    settings = replace(settings, identity_quota=2)
    store.insert_items([CatalogItem(id="a", external_key="K1")])
    index = build_review_index([
        review("K1", "U1", "one"),
        review("K1", "U2", "two"),
        review("K1", "U3", "three"),
    ])

    first = merge_external_reviews(store, index, PipelineContext.create(settings))
    second = merge_external_reviews(store, index, PipelineContext.create(settings))

    assert first.extra["quota_dropped"] == 1
    assert first.extra["dropped_reviews"] == 1
    assert second.extra["quota_dropped"] == 1
    assert store.count_identities() == 2
    assert len(store.find_item("a").reviews) == 2


def test_default_quota_never_exceeded_over_two_runs(store: CatalogStore, settings) -> None:
    keys = [f"REVIEWER{i:05d}" for i in range(2600)]
    first_context = PipelineContext.create(settings)
    first_report = first_context.start_stage("reviews")

    reconcile_identities(store, keys, first_context, first_report)

    second_context = PipelineContext.create(settings)
    second_report = second_context.start_stage("reviews")
    reconcile_identities(store, [f"LATE{i:05d}" for i in range(50)], second_context, second_report)

    assert settings.identity_quota == 2512
    assert first_report.extra["identities_created"] == 2512
    assert first_report.extra["quota_dropped"] == 88
    assert second_report.extra["quota_dropped"] == 50
    assert store.count_identities() == 2512


def test_existing_identities_are_reused_when_quota_is_full(
    store: CatalogStore, settings
) -> None:
    settings = replace(settings, identity_quota=1)
    context = PipelineContext.create(settings)
    report = context.start_stage("reviews")
    store.insert_identities([synthesize_identity("U1")])

    identities = reconcile_identities(store, ["U1", "U2"], context, report)

    assert "U1" in identities
    assert "U2" not in identities
    assert report.extra["quota_dropped"] == 1


def test_identity_conflict_is_skipped(store: CatalogStore, context: PipelineContext) -> None:
    """An email clash on insert skips the identity and frees its quota slot."""
    store.insert_identities([
        ReviewerIdentity(id="staff", email="reviewer_u1@placeholder.invalid"),
    ])
    report = context.start_stage("reviews")

    identities = reconcile_identities(store, ["U1", "U2"], context, report)

    assert "U1" not in identities
    assert "U2" in identities
    assert report.extra["identity_conflicts"] == 1
    assert context.quota.used == 1


def test_fill_reviews_to_target_uses_unused_identities() -> None:
    pool = [ReviewerIdentity(id=f"u{i}", name=f"User {i}", email=f"u{i}@x.test") for i in range(1, 5)]
    item = CatalogItem(
        id="a",
        review_target=5,
        reviews=[Review(reviewer_id="u1", rating=5, comment="Mine")],
    )

    added, shortfall = fill_reviews_to_target(item, pool, np.random.default_rng(3), NOW)

    assert len(added) == 3
    assert shortfall == 1
    assert {r.reviewer_id for r in added} == {"u2", "u3", "u4"}
    assert all(1 <= r.rating <= 5 for r in added)
    assert all(r.comment for r in added)


@pytest.mark.parametrize("review_target", [0, 1])
def test_fill_reviews_to_target_noop_when_met(review_target: int) -> None:
    item = CatalogItem(
        id="a",
        review_target=review_target,
        reviews=[Review(reviewer_id="u1", rating=5)],
    )
    pool = [ReviewerIdentity(id="u2", email="u2@x.test")]

    assert fill_reviews_to_target(item, pool, np.random.default_rng(0), NOW) == ([], 0)
