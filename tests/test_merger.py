"""Tests for idempotent enrichment merging."""

import pytest

from catalogsync.pipeline.context import PipelineContext
from catalogsync.pipeline.indexing import build_metadata_index, build_review_index
from catalogsync.pipeline.merger import (
    AUTHORITATIVE,
    ENRICHMENT_RULES,
    FieldRule,
    compute_patch,
    enrich_catalog,
)
from catalogsync.pipeline.models import CatalogItem, MetadataRecord, Review
from catalogsync.pipeline.reviews import merge_external_reviews
from catalogsync.storage import CatalogStore


@pytest.fixture
def meta() -> MetadataRecord:
    return MetadataRecord.from_raw({
        "parent_asin": "K1",
        "title": "Cotton Tee",
        "description": ["Soft.", "Breathable."],
        "price": 19.99,
        "images": [{"large": "img/1.jpg"}, {"thumb": "img/2.jpg"}],
        "store": "Northwind",
        "main_category": "Tops",
        "average_rating": 4.6,
        "rating_number": 31,
    })


def test_rules_are_ordered_and_cover_every_field() -> None:
    fields = [rule.field for rule in ENRICHMENT_RULES]

    assert fields == [
        "name", "external_rating", "review_target", "price", "description", "images", "brand",
        "category",
    ]


def test_patch_fills_empty_fields(meta: MetadataRecord) -> None:
    item = CatalogItem(id="a", external_key="K1", description="No description")

    patch = compute_patch(item, meta)

    assert patch == {
        "name": "Cotton Tee",
        "external_rating": 4.6,
        "review_target": 31,
        "price": 19.99,
        "description": "Soft.\nBreathable.",
        "images": ["img/1.jpg", "img/2.jpg"],
        "brand": "Northwind",
        "category": "Tops",
    }


def test_patch_keeps_curated_fields(meta: MetadataRecord) -> None:
    """Only authoritative fields overwrite existing values."""
    item = CatalogItem(
        id="a",
        name="Our Tee",
        brand="House Brand",
        category="Shirts",
        description="Written by us.",
        images=["img/2.jpg", "img/0.jpg"],
        price=25.0,
        rating=3.0,
        num_reviews=2,
    )

    patch = compute_patch(item, meta)

    assert "name" not in patch
    assert "brand" not in patch
    assert "category" not in patch
    assert "description" not in patch
    assert patch["images"] == ["img/2.jpg", "img/0.jpg", "img/1.jpg"]
    assert patch["price"] == 19.99
    assert patch["external_rating"] == 4.6
    assert patch["review_target"] == 31
    assert "rating" not in patch
    assert "num_reviews" not in patch


def test_patch_ignores_missing_and_non_positive_values() -> None:
    item = CatalogItem(id="a", price=10.0, external_rating=4.0, review_target=3)
    meta = MetadataRecord(parent_key="K1", price=0.0, average_rating=None, rating_number=0)

    assert compute_patch(item, meta) == {}


def test_patch_is_idempotent(meta: MetadataRecord) -> None:
    item = CatalogItem(id="a", external_key="K1")

    patched = item.model_copy(update=compute_patch(item, meta))

    assert compute_patch(patched, meta) == {}


def test_unknown_rule_raises() -> None:
    rule = FieldRule("name", "title", "replace_always")

    with pytest.raises(ValueError):
        rule.apply("", "x")


def test_authoritative_rule_reports_unchanged_value() -> None:
    rule = FieldRule("price", "price", AUTHORITATIVE)

    assert rule.apply(5.0, 5.0) == (False, 5.0)
    assert rule.apply(5.0, 6.0) == (True, 6.0)


def test_enrich_catalog_counts_and_reruns(
    store: CatalogStore, context: PipelineContext
) -> None:
    index = build_metadata_index([
        {"parent_asin": "K1", "title": "Cotton Tee", "store": "Northwind"},
        {"parent_asin": "K2", "title": "Wool Scarf", "price": 12.5},
    ])
    store.insert_items([
        CatalogItem(id="a", external_key="K1"),
        CatalogItem(id="b", name="Scarf", external_key="K2"),
        CatalogItem(id="c", external_key="K404"),
        CatalogItem(id="d"),
    ])

    first = enrich_catalog(store, index, context)
    second = enrich_catalog(store, index, context)

    assert first.updated == 2
    assert first.not_found == 1
    assert store.find_item("a").brand == "Northwind"
    assert store.find_item("b").name == "Scarf"
    assert store.find_item("b").price == 12.5
    assert second.updated == 0
    assert second.skipped == 2
    assert second.not_found == 1


def test_enrich_leaves_review_aggregates_alone(store: CatalogStore, settings) -> None:
    """External figures never overwrite aggregates derived from reviews."""
    index = build_metadata_index([
        {"parent_asin": "K1", "title": "Cotton Tee", "average_rating": 4.6, "rating_number": 31},
    ])
    store.insert_items([
        CatalogItem(
            id="a",
            external_key="K1",
            reviews=[Review(reviewer_id="u1", rating=5, comment="Great")],
            num_reviews=1,
            rating=5.0,
        ),
    ])

    enrich_catalog(store, index, PipelineContext.create(settings))
    merge_external_reviews(store, build_review_index([]), PipelineContext.create(settings))
    rerun = enrich_catalog(store, index, PipelineContext.create(settings))

    item = store.find_item("a")
    assert (item.num_reviews, item.rating) == (1, 5.0)
    assert (item.review_target, item.external_rating) == (31, 4.6)
    assert rerun.updated == 0
    assert rerun.skipped == 1
