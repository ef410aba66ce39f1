"""Fuzzy resolution of catalog items to external product keys.

Matching strategy, in order:
1. Exact normalized title lookup (score 1.0).
2. Candidates sharing a long keyword with the item name.
3. A bounded sample of known keys when no keyword matches.

Candidates are scored by containment or token overlap and the best one above
the acceptance threshold wins. Items already carrying an external key are
never looked at again, and their key is never changed.
"""

import logging
from dataclasses import dataclass
from itertools import islice
from typing import List, Optional, Tuple

from catalogsync.pipeline.batching import iter_item_batches
from catalogsync.pipeline.context import PipelineContext, StageReport
from catalogsync.pipeline.indexing import MetadataIndex, keyword_tokens, normalize_title
from catalogsync.storage import CatalogStore

# Configure module logger
logger = logging.getLogger(__name__)

# Scoring thresholds. These are heuristics that have not been tuned against
# labeled matches; changing them shifts recall against precision.
ACCEPT_THRESHOLD = 0.4
EARLY_EXIT_THRESHOLD = 0.8
EXACT_SCORE = 1.0
CONTAINMENT_SCORE = 0.8

# Candidate caps
MAX_KEYWORD_CANDIDATES = 100
FALLBACK_SAMPLE_SIZE = 1000
MIN_SIMILARITY_TOKEN_LENGTH = 2  # tokens longer than this are compared

UNRESOLVED_FILTER = {"external_key": None}


def title_similarity(first: str, second: str) -> float:
    """Similarity between two titles in [0, 1].

    Returns 0.8 when one normalized string contains the other, otherwise the
    share of common tokens over all distinct tokens (tokens of length > 2).

    Example:
        >>> title_similarity("Men's Classic Cotton T-Shirt", "Men's Cotton Classic Tee")
        0.6
    """
    if not first or not second:
        return 0.0

    a = normalize_title(first)
    b = normalize_title(second)
    if not a or not b:
        return 0.0
    if a in b or b in a:
        return CONTAINMENT_SCORE

    tokens_a = {w for w in a.split() if len(w) > MIN_SIMILARITY_TOKEN_LENGTH}
    tokens_b = {w for w in b.split() if len(w) > MIN_SIMILARITY_TOKEN_LENGTH}
    union = tokens_a | tokens_b
    if not union:
        return 0.0
    return len(tokens_a & tokens_b) / len(union)


@dataclass(frozen=True)
class Match:
    """An accepted resolution."""

    key: str
    score: float
    method: str  # "exact", "keyword" or "sample"


class SimilarityResolver:
    """Resolves item names against a metadata index."""

    def __init__(
        self,
        index: MetadataIndex,
        accept_threshold: float = ACCEPT_THRESHOLD,
        early_exit_threshold: float = EARLY_EXIT_THRESHOLD,
        max_candidates: int = MAX_KEYWORD_CANDIDATES,
        fallback_sample_size: int = FALLBACK_SAMPLE_SIZE,
    ):
        self.index = index
        self.accept_threshold = accept_threshold
        self.early_exit_threshold = early_exit_threshold
        self.max_candidates = max_candidates
        self.fallback_sample_size = fallback_sample_size

    def candidates(self, normalized_name: str) -> Tuple[List[str], str]:
        """Candidate keys for a normalized name and how they were found."""
        found = {}
        for keyword in keyword_tokens(normalized_name):
            for key in self.index.keywords.get(keyword, ()):
                found.setdefault(key, None)

        if found:
            return list(islice(found, self.max_candidates)), "keyword"
        return list(islice(self.index.keys(), self.fallback_sample_size)), "sample"

    def resolve(self, name: str) -> Optional[Match]:
        """Find the best external key for an item name.

        Returns:
            The accepted match, or None when nothing scores above the
            acceptance threshold.
        """
        normalized = normalize_title(name)
        if not normalized:
            return None

        exact = self.index.titles.get(normalized)
        if exact is not None:
            return Match(key=exact, score=EXACT_SCORE, method="exact")

        keys, method = self.candidates(normalized)
        best_key = None
        best_score = 0.0
        for key in keys:
            meta = self.index.first(key)
            if meta is None or not meta.title:
                continue

            score = title_similarity(name, meta.title)
            if score > best_score and score > self.accept_threshold:
                best_key = key
                best_score = score
                if score > self.early_exit_threshold:
                    break

        if best_key is None:
            return None
        return Match(key=best_key, score=best_score, method=method)


def resolve_catalog(
    store: CatalogStore,
    index: MetadataIndex,
    context: PipelineContext,
    after: Optional[int] = None,
) -> StageReport:
    """Assign external keys to unresolved catalog items.

    Args:
        store: Catalog store.
        index: Metadata index to match against.
        context: Run context.
        after: Optional resume cursor.

    Returns:
        StageReport with ``examined``, ``matched``, ``exact`` and
        ``match_rate`` extras; unresolved items are counted in ``not_found``.
    """
    report = context.start_stage("resolve")
    resolver = SimilarityResolver(index)
    total = store.count_items(UNRESOLVED_FILTER)
    examined = 0

    logger.info(
        f"Resolving {total:,} unresolved items against {len(index):,} external keys"
    )

    for batch in iter_item_batches(store, UNRESOLVED_FILTER, context.settings.batch_size, after):
        patches = []
        for item in batch:
            if item.external_key is not None:
                continue
            if not item.name.strip():
                report.skipped += 1
                continue

            examined += 1
            match = resolver.resolve(item.name)
            if match is None:
                report.not_found += 1
                continue

            patches.append((item.id, {"external_key": match.key}))
            report.bump("matched")
            if match.method == "exact":
                report.bump("exact")
            logger.debug(
                f"Matched '{item.name}' -> {match.key}",
                extra={"item_id": item.id, "score": round(match.score, 3), "method": match.method},
            )

        if patches:
            report.add_write(store.bulk_apply_patches(patches))
        report.last_cursor = batch[-1].seq

        logger.info(
            f"Resolve batch done: {report.extra.get('matched', 0)} matched, "
            f"{report.not_found} unresolved so far",
            extra={"cursor": report.last_cursor},
        )

    matched = report.extra.get("matched", 0)
    report.extra["examined"] = examined
    report.extra["match_rate"] = round(matched / examined, 4) if examined else 0.0
    logger.info(
        f"Resolution finished: {matched}/{examined} matched "
        f"({report.extra['match_rate']:.2%})"
    )
    return report
