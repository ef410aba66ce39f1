"""Run-scoped state shared by the pipeline stages.

A single :class:`PipelineContext` is created per run and passed to every
stage. It owns the random source, the identity quota counter, caches and the
per-stage reports, so nothing lives in module globals.
"""

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import numpy as np

from catalogsync.config import PipelineSettings
from catalogsync.exceptions import QuotaExceededError
from catalogsync.storage import CatalogStore, WriteResult

# Configure module logger
logger = logging.getLogger(__name__)

# Synthesized identities are the ones carrying an external key
SYNTHESIZED_IDENTITY_FILTER = {"external_key": {"$exists": True}}


@dataclass
class StageReport:
    """Counters for one stage of a run."""

    stage: str
    created: int = 0
    updated: int = 0
    skipped: int = 0
    not_found: int = 0
    failed: int = 0
    last_cursor: Optional[int] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def add_write(self, result: WriteResult) -> None:
        """Fold a bulk write outcome into the updated/failed counters."""
        self.updated += result.applied
        self.failed += result.failed

    def bump(self, name: str, amount: int = 1) -> None:
        """Increment a stage-specific counter."""
        self.extra[name] = self.extra.get(name, 0) + amount

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


class IdentityQuota:
    """Upper bound on synthesized reviewer identities.

    The counter starts from the number already persisted, so consecutive
    runs share one budget.
    """

    def __init__(self, quota: int, used: int = 0):
        self.quota = quota
        self.used = used

    @property
    def exhausted(self) -> bool:
        return self.used >= self.quota

    def reserve(self, external_key: str) -> None:
        """Take one slot for a new identity.

        Raises:
            QuotaExceededError: If no slots are left.
        """
        if self.exhausted:
            raise QuotaExceededError(self.quota, external_key)
        self.used += 1

    def release(self, count: int = 1) -> None:
        """Give back slots whose identities were not persisted."""
        self.used = max(self.used - count, 0)


@dataclass
class PipelineContext:
    """State for one pipeline run.

    Attributes:
        settings: Run configuration.
        rng: Random source for every randomized step; seed it for
            reproducible runs.
        clock: Returns the current UTC time.
        quota: Identity quota, set by :meth:`init_quota`.
        caches: Run-scoped caches keyed by name.
        reports: Stage reports in the order the stages ran.
    """

    settings: PipelineSettings
    rng: np.random.Generator
    clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc)
    quota: Optional[IdentityQuota] = None
    caches: Dict[str, Any] = field(default_factory=dict)
    reports: List[StageReport] = field(default_factory=list)

    @classmethod
    def create(cls, settings: PipelineSettings) -> "PipelineContext":
        return cls(settings=settings, rng=np.random.default_rng(settings.random_seed))

    def init_quota(self, store: CatalogStore) -> IdentityQuota:
        """Start the quota counter from the persisted identity count."""
        used = store.count_identities(SYNTHESIZED_IDENTITY_FILTER)
        self.quota = IdentityQuota(self.settings.identity_quota, used)
        logger.info(
            f"Identity quota: {used}/{self.settings.identity_quota} used",
            extra={"quota": self.settings.identity_quota, "used": used},
        )
        return self.quota

    def start_stage(self, name: str) -> StageReport:
        report = StageReport(stage=name)
        self.reports.append(report)
        return report
