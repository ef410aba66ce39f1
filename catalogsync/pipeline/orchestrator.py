"""Drives the pipeline stages over the catalog in resumable batches.

Each stage walks the catalog with "next N items after cursor" queries and
flushes its patches once per batch. A run can be resumed from the
``last_cursor`` of any stage report.
"""

import logging
from typing import Callable, Dict, List, Optional, Sequence

from catalogsync.config import PipelineSettings
from catalogsync.pipeline.batching import ProgressTracker, iter_item_batches
from catalogsync.pipeline.context import PipelineContext, StageReport
from catalogsync.pipeline.features import build_features
from catalogsync.pipeline.indexing import (
    MetadataIndex,
    ReviewIndex,
    build_metadata_index,
    build_review_index,
)
from catalogsync.pipeline.merger import enrich_catalog
from catalogsync.pipeline.reader import JsonlReader
from catalogsync.pipeline.resolver import resolve_catalog
from catalogsync.pipeline.reviews import (
    aggregates_stale,
    fill_reviews_to_target,
    load_fill_pool,
    merge_external_reviews,
    review_patch,
)
from catalogsync.pipeline.variants import variant_patch
from catalogsync.storage import CatalogStore

# Configure module logger
logger = logging.getLogger(__name__)

STAGES = ("resolve", "enrich", "reviews", "features", "variants")

METADATA_INDEX_CACHE = "metadata_index"
REVIEW_INDEX_CACHE = "review_index"


class PipelineOrchestrator:
    """Runs pipeline stages against one catalog store.

    Example:
        >>> with CatalogStore.open(settings.db_url) as store:
        ...     orchestrator = PipelineOrchestrator(store, settings)
        ...     reports = orchestrator.run_all()
    """

    def __init__(
        self,
        store: CatalogStore,
        settings: PipelineSettings,
        context: Optional[PipelineContext] = None,
    ):
        self.store = store
        self.settings = settings
        self.context = context or PipelineContext.create(settings)

    @property
    def metadata_index(self) -> MetadataIndex:
        """Metadata index, built on first use and reused for the run."""
        index = self.context.caches.get(METADATA_INDEX_CACHE)
        if index is None:
            reader = JsonlReader(self.settings.meta_file, self.settings.progress_every)
            index = build_metadata_index(reader)
            self.context.caches[METADATA_INDEX_CACHE] = index
        return index

    @property
    def review_index(self) -> ReviewIndex:
        """Review index, built on first use and reused for the run."""
        index = self.context.caches.get(REVIEW_INDEX_CACHE)
        if index is None:
            reader = JsonlReader(self.settings.review_file, self.settings.progress_every)
            index = build_review_index(reader)
            self.context.caches[REVIEW_INDEX_CACHE] = index
        return index

    def run_resolution(self, after: Optional[int] = None) -> StageReport:
        return resolve_catalog(self.store, self.metadata_index, self.context, after)

    def run_enrichment(self, after: Optional[int] = None) -> StageReport:
        return enrich_catalog(self.store, self.metadata_index, self.context, after)

    def run_reviews(self, after: Optional[int] = None) -> StageReport:
        return merge_external_reviews(self.store, self.review_index, self.context, after)

    def run_features(self, after: Optional[int] = None) -> StageReport:
        return build_features(self.store, self.context, after)

    def run_variants(self, after: Optional[int] = None) -> StageReport:
        """Regenerate variants, then top up reviews to ``review_target``, item by item.

        Review aggregates are rewritten whenever reviews are added or the
        stored values disagree with the review list.

        Args:
            after: Optional resume cursor.

        Returns:
            StageReport; ``created`` counts added reviews, ``updated`` items
            written, and ``review_shortfall`` reviews that could not be added
            for lack of unused identities.
        """
        report = self.context.start_stage("variants")
        count_filter = {"seq": {"$gt": after}} if after is not None else None
        tracker = ProgressTracker(self.store.count_items(count_filter))
        pool = load_fill_pool(self.store, self.context)
        rng = self.context.rng

        for batch in iter_item_batches(self.store, None, self.settings.variant_batch_size, after):
            patches = []
            for item in batch:
                patch = variant_patch(item, rng)
                report.bump("variants", len(patch["variants"]))

                added, shortfall = fill_reviews_to_target(item, pool, rng, self.context.clock())
                if added or aggregates_stale(item):
                    patch.update(review_patch(item.reviews + added))
                    report.created += len(added)
                if shortfall:
                    report.bump("review_shortfall", shortfall)
                    report.bump("items_short")
                    logger.debug(
                        f"Item {item.id} is {shortfall} reviews short of {item.review_target}",
                        extra={"item_id": item.id},
                    )

                patches.append((item.id, patch))
                tracker.update(item.name)

            report.add_write(self.store.bulk_apply_patches(patches))
            report.last_cursor = batch[-1].seq
            logger.info(
                f"Variant batch done: {report.updated} items written, "
                f"{report.created} reviews added",
                extra={"cursor": report.last_cursor, "failed": report.failed},
            )

        return report

    def stage_runners(self) -> Dict[str, Callable[[Optional[int]], StageReport]]:
        return {
            "resolve": self.run_resolution,
            "enrich": self.run_enrichment,
            "reviews": self.run_reviews,
            "features": self.run_features,
            "variants": self.run_variants,
        }

    def run_stage(self, name: str, after: Optional[int] = None) -> StageReport:
        """Run one stage by name and log its summary."""
        runners = self.stage_runners()
        if name not in runners:
            raise ValueError(f"Unknown stage '{name}'. Choose from: {', '.join(STAGES)}")

        logger.info(f"Starting stage '{name}'", extra={"stage": name, "after": after})
        report = runners[name](after)
        log_report(report)
        return report

    def run_all(
        self, after: Optional[int] = None, stages: Sequence[str] = STAGES
    ) -> List[StageReport]:
        """Run stages in order; the resume cursor applies to each of them."""
        return [self.run_stage(name, after) for name in stages]


def log_report(report: StageReport) -> None:
    # Counters go under one key; names like "created" are LogRecord attributes
    counters = {k: v for k, v in report.as_dict().items() if k not in ("stage", "extra")}
    counters.update({k: v for k, v in report.extra.items() if not isinstance(v, dict)})
    logger.info(
        f"Stage '{report.stage}' finished: created={report.created} "
        f"updated={report.updated} skipped={report.skipped} "
        f"not_found={report.not_found} failed={report.failed} "
        f"last_cursor={report.last_cursor}",
        extra={"stage": report.stage, "counters": counters},
    )
