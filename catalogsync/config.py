"""Runtime configuration for pipeline runs.

Settings come from environment variables (a local ``.env`` file is loaded if
present) and can be overridden from the command line. Algorithm thresholds
live as constants next to the code that uses them.
"""

import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

DEFAULT_DB_URL = "sqlite:///catalog.db"
DEFAULT_REVIEW_FILE = "data/reviews.jsonl"
DEFAULT_META_FILE = "data/meta.jsonl"
DEFAULT_ARTIFACT_DIR = "models"
DEFAULT_IDENTITY_QUOTA = 2512
DEFAULT_BATCH_SIZE = 1000
DEFAULT_VARIANT_BATCH_SIZE = 100
DEFAULT_PROGRESS_EVERY = 10000
DEFAULT_LOG_LEVEL = "INFO"


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError as e:
        raise ValueError(f"Environment variable {name} must be an integer, got {value!r}") from e


@dataclass(frozen=True)
class PipelineSettings:
    """Settings for one pipeline run.

    Attributes:
        db_url: Catalog store connection string.
        review_file: Path to the review JSONL stream.
        meta_file: Path to the product metadata JSONL stream.
        artifact_dir: Directory for fitted feature artifacts.
        identity_quota: Upper bound on synthesized reviewer identities.
        batch_size: Keys or items handled per batch in bulk stages.
        variant_batch_size: Items per batch in the variant/top-up stage.
        progress_every: Reader progress log interval, in records.
        random_seed: Seed for the run's random source (None = entropy).
        log_level: Logging level name.
    """

    db_url: str = DEFAULT_DB_URL
    review_file: str = DEFAULT_REVIEW_FILE
    meta_file: str = DEFAULT_META_FILE
    artifact_dir: str = DEFAULT_ARTIFACT_DIR
    identity_quota: int = DEFAULT_IDENTITY_QUOTA
    batch_size: int = DEFAULT_BATCH_SIZE
    variant_batch_size: int = DEFAULT_VARIANT_BATCH_SIZE
    progress_every: int = DEFAULT_PROGRESS_EVERY
    random_seed: Optional[int] = None
    log_level: str = DEFAULT_LOG_LEVEL

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> "PipelineSettings":
        """Build settings from environment variables.

        Args:
            env_file: Optional path to a dotenv file. When omitted, a
                ``.env`` in the working directory is used if it exists.
        """
        load_dotenv(dotenv_path=env_file)

        seed = os.getenv("RANDOM_SEED")
        return cls(
            db_url=os.getenv("CATALOG_DB_URL", DEFAULT_DB_URL),
            review_file=os.getenv("REVIEW_FILE", DEFAULT_REVIEW_FILE),
            meta_file=os.getenv("META_FILE", DEFAULT_META_FILE),
            artifact_dir=os.getenv("ARTIFACT_DIR", DEFAULT_ARTIFACT_DIR),
            identity_quota=_env_int("IDENTITY_QUOTA", DEFAULT_IDENTITY_QUOTA),
            batch_size=_env_int("BATCH_SIZE", DEFAULT_BATCH_SIZE),
            variant_batch_size=_env_int("VARIANT_BATCH_SIZE", DEFAULT_VARIANT_BATCH_SIZE),
            progress_every=_env_int("PROGRESS_EVERY", DEFAULT_PROGRESS_EVERY),
            random_seed=int(seed) if seed else None,
            log_level=os.getenv("LOG_LEVEL", DEFAULT_LOG_LEVEL),
        )

    def with_overrides(self, **overrides) -> "PipelineSettings":
        """Return a copy with every non-None override applied."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})

    def validate(self) -> None:
        """Check numeric bounds.

        Raises:
            ValueError: If a size or quota is out of range.
        """
        if self.identity_quota < 0:
            raise ValueError("identity_quota must be >= 0")
        if self.batch_size <= 0 or self.variant_batch_size <= 0:
            raise ValueError("batch sizes must be positive")
        if self.progress_every <= 0:
            raise ValueError("progress_every must be positive")

    @property
    def artifact_path(self) -> Path:
        return Path(self.artifact_dir)
