"""Shared fixtures for pipeline tests."""

import json
import sys
from pathlib import Path
from typing import Callable, Generator, Iterable, List

import pytest

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from catalogsync.config import PipelineSettings
from catalogsync.pipeline.context import PipelineContext
from catalogsync.storage import CatalogStore


@pytest.fixture
def store() -> Generator[CatalogStore, None, None]:
    """In-memory catalog store, closed after the test."""
    catalog = CatalogStore.open("sqlite://:memory:")
    yield catalog
    catalog.close()


@pytest.fixture
def settings(tmp_path: Path) -> PipelineSettings:
    """Settings pointing at files inside the test's temp directory."""
    return PipelineSettings(
        db_url="sqlite://:memory:",
        review_file=str(tmp_path / "reviews.jsonl"),
        meta_file=str(tmp_path / "meta.jsonl"),
        artifact_dir=str(tmp_path / "models"),
        batch_size=3,
        variant_batch_size=2,
        random_seed=42,
    )


@pytest.fixture
def context(settings: PipelineSettings) -> PipelineContext:
    return PipelineContext.create(settings)


@pytest.fixture
def write_jsonl() -> Callable[[Path, Iterable[object]], Path]:
    """Write rows (dicts or raw strings) as one line each."""

    def _write(path: Path, rows: Iterable[object]) -> Path:
        lines: List[str] = []
        for row in rows:
            lines.append(row if isinstance(row, str) else json.dumps(row))
        path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        return path

    return _write


SETTINGS_ENV_VARS = (
    "CATALOG_DB_URL",
    "REVIEW_FILE",
    "META_FILE",
    "ARTIFACT_DIR",
    "IDENTITY_QUOTA",
    "BATCH_SIZE",
    "VARIANT_BATCH_SIZE",
    "PROGRESS_EVERY",
    "RANDOM_SEED",
    "LOG_LEVEL",
)


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    """Unset every settings variable and restore the originals afterwards.

    Values loaded from a dotenv file during the test are removed as well.
    """
    for name in SETTINGS_ENV_VARS:
        # Register for restore, then clear
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)
    return monkeypatch
