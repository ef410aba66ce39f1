"""Tests for fuzzy resolution of catalog items."""

import pytest

from catalogsync.pipeline.context import PipelineContext
from catalogsync.pipeline.indexing import build_metadata_index
from catalogsync.pipeline.models import CatalogItem
from catalogsync.pipeline.resolver import SimilarityResolver, resolve_catalog, title_similarity
from catalogsync.storage import CatalogStore


@pytest.fixture
def meta_index():
    return build_metadata_index([
        {"parent_asin": "TEE1", "title": "Men's Cotton Classic Tee"},
        {"parent_asin": "BELT1", "title": "Brown Leather Belt"},
        {"parent_asin": "HAT1", "title": "Red Hat"},
        {"parent_asin": "SOCK1", "title": "Wool Hiking Socks"},
    ])


def test_similarity_example_shared_tokens() -> None:
    """3 shared tokens over a 5-token union."""
    score = title_similarity("Men's Classic Cotton T-Shirt", "Men's Cotton Classic Tee")

    assert score == pytest.approx(0.6)
    assert score > 0.4


def test_similarity_containment_scores_fixed_value() -> None:
    assert title_similarity("Red Hat", "Red Hat for Summer") == 0.8
    assert title_similarity("  RED HAT ", "red hat") == 0.8


def test_similarity_empty_inputs() -> None:
    assert title_similarity("", "anything") == 0.0
    assert title_similarity("ab", "cd") == 0.0


def test_resolve_exact_title(meta_index) -> None:
    match = SimilarityResolver(meta_index).resolve("  brown leather BELT")

    assert match.key == "BELT1"
    assert match.score == 1.0
    assert match.method == "exact"


def test_resolve_keyword_candidate(meta_index) -> None:
    match = SimilarityResolver(meta_index).resolve("Men's Classic Cotton T-Shirt")

    assert match.key == "TEE1"
    assert match.method == "keyword"
    assert match.score == pytest.approx(0.6)


def test_resolve_falls_back_to_sample(meta_index) -> None:
    """No token is long enough for the keyword index."""
    match = SimilarityResolver(meta_index).resolve("Red Hat Big")

    assert match.key == "HAT1"
    assert match.method == "sample"


def test_resolve_rejects_weak_matches(meta_index) -> None:
    resolver = SimilarityResolver(meta_index)

    assert resolver.resolve("Gift Card") is None
    assert resolver.resolve("Leather Sofa Cover Deluxe") is None
    assert resolver.resolve("") is None


def test_resolve_picks_best_candidate() -> None:
    index = build_metadata_index([
        {"parent_asin": "A", "title": "cotton shirt blue large striped"},
        {"parent_asin": "B", "title": "cotton shirt blue"},
    ])

    match = SimilarityResolver(index).resolve("cotton shirt blue medium")

    assert match.key == "B"
    assert match.score == pytest.approx(0.8)


def test_resolve_catalog_assigns_keys_once(
    store: CatalogStore, context: PipelineContext, meta_index
) -> None:
    store.insert_items([
        CatalogItem(id="tee", name="Men's Classic Cotton T-Shirt"),
        CatalogItem(id="belt", name="Leather Belt Brown"),
        CatalogItem(id="card", name="Gift Card"),
        CatalogItem(id="blank", name="   "),
        CatalogItem(id="curated", name="Brown Leather Belt", external_key="MANUAL"),
    ])

    report = resolve_catalog(store, meta_index, context)

    assert store.find_item("tee").external_key == "TEE1"
    assert store.find_item("belt").external_key == "BELT1"
    assert store.find_item("card").external_key is None
    assert store.find_item("curated").external_key == "MANUAL"
    assert report.extra["matched"] == 2
    assert report.extra["examined"] == 3
    assert report.not_found == 1
    assert report.skipped == 1
    assert report.updated == 2
    assert report.extra["match_rate"] == pytest.approx(2 / 3, abs=1e-4)


def test_resolve_catalog_rerun_never_changes_keys(
    store: CatalogStore, context: PipelineContext, meta_index
) -> None:
    store.insert_items([CatalogItem(id="tee", name="Men's Classic Cotton T-Shirt")])
    resolve_catalog(store, meta_index, context)

    other_index = build_metadata_index([
        {"parent_asin": "OTHER", "title": "Men's Classic Cotton T-Shirt"},
    ])
    report = resolve_catalog(store, other_index, context)

    assert store.find_item("tee").external_key == "TEE1"
    assert report.updated == 0
    assert report.extra.get("matched", 0) == 0
