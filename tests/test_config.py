"""Tests for environment-driven settings."""

from pathlib import Path

import pytest

from catalogsync.config import DEFAULT_BATCH_SIZE, DEFAULT_IDENTITY_QUOTA, PipelineSettings


def test_defaults(clean_env, tmp_path: Path) -> None:
    settings = PipelineSettings.from_env(str(tmp_path / "absent.env"))

    assert settings.batch_size == DEFAULT_BATCH_SIZE
    assert settings.identity_quota == DEFAULT_IDENTITY_QUOTA
    assert settings.random_seed is None


def test_environment_variables(clean_env) -> None:
    clean_env.setenv("CATALOG_DB_URL", "sqlite:///other.db")
    clean_env.setenv("BATCH_SIZE", "250")
    clean_env.setenv("RANDOM_SEED", "7")
    clean_env.setenv("IDENTITY_QUOTA", "10")

    settings = PipelineSettings.from_env()

    assert settings.db_url == "sqlite:///other.db"
    assert settings.batch_size == 250
    assert settings.random_seed == 7
    assert settings.identity_quota == 10


def test_dotenv_file(clean_env, tmp_path: Path) -> None:
    env_file = tmp_path / "pipeline.env"
    env_file.write_text("META_FILE=/data/meta.jsonl\nVARIANT_BATCH_SIZE=5\n", encoding="utf-8")

    settings = PipelineSettings.from_env(str(env_file))

    assert settings.meta_file == "/data/meta.jsonl"
    assert settings.variant_batch_size == 5


def test_environment_wins_over_dotenv(clean_env, tmp_path: Path) -> None:
    env_file = tmp_path / "pipeline.env"
    env_file.write_text("BATCH_SIZE=5\n", encoding="utf-8")
    clean_env.setenv("BATCH_SIZE", "9")

    assert PipelineSettings.from_env(str(env_file)).batch_size == 9


def test_bad_integer_raises(clean_env) -> None:
    clean_env.setenv("BATCH_SIZE", "lots")

    with pytest.raises(ValueError, match="BATCH_SIZE"):
        PipelineSettings.from_env()


def test_with_overrides_ignores_none() -> None:
    settings = PipelineSettings(batch_size=10, random_seed=3)

    updated = settings.with_overrides(batch_size=None, random_seed=8)

    assert updated.batch_size == 10
    assert updated.random_seed == 8
    assert settings.random_seed == 3


@pytest.mark.parametrize(
    "overrides",
    [{"identity_quota": -1}, {"batch_size": 0}, {"variant_batch_size": -5}, {"progress_every": 0}],
)
def test_validate_rejects_out_of_range(overrides) -> None:
    with pytest.raises(ValueError):
        PipelineSettings(**overrides).validate()


def test_validate_accepts_defaults() -> None:
    PipelineSettings().validate()
    assert PipelineSettings(artifact_dir="out").artifact_path == Path("out")
