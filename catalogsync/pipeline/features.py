"""Content features for downstream recommendations.

Three derived fields are maintained on catalog items:
- ``feature_vector``: TF-IDF vector over a vocabulary fitted on a catalog sample.
- ``category``: rule-based label, applied only where the stored category is
  empty or "other".
- ``compatible_items``: a random sample of peers in the same category,
  applied only where the list is empty.
"""

import hashlib
import logging
import re
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from scipy.sparse import diags
from sklearn.feature_extraction.text import ENGLISH_STOP_WORDS, CountVectorizer

from catalogsync.pipeline.artifacts import load_vectorizer_metadata, save_vectorizer
from catalogsync.pipeline.batching import iter_item_batches
from catalogsync.pipeline.context import PipelineContext, StageReport
from catalogsync.pipeline.indexing import group_by_key
from catalogsync.pipeline.models import CatalogItem
from catalogsync.storage import CatalogStore

# Configure module logger
logger = logging.getLogger(__name__)

# Vectorizer configuration
MIN_TOKEN_LENGTH = 2  # tokens longer than this are kept
DEFAULT_FIT_SAMPLE_SIZE = 1000
_WORD_SPLIT = re.compile(r"\W+")
_ALPHABETIC = re.compile(r"^[a-z]+$")

# Taxonomy
DEFAULT_CATEGORY = "Other"
CATEGORY_RULES: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("Tops", ("shirt", "tee", "t-shirt", "blouse", "top", "polo")),
    ("Bottoms", ("pant", "jean", "short", "trouser", "legging", "skirt")),
    ("Dresses", ("dress", "gown", "jumpsuit")),
    ("Shoes", ("shoe", "sock", "sneaker", "boot", "sandal", "heel")),
    ("Accessories", ("bag", "hat", "belt", "watch", "jewelry", "scarf", "glove", "sunglass")),
)

DEFAULT_COMPATIBLE_COUNT = 3
PEERS_CACHE = "category_peers"


def tokenize(text: str) -> List[str]:
    """Split text into lowercase alphabetic tokens, minus short and stop words."""
    return [
        token
        for token in _WORD_SPLIT.split((text or "").lower())
        if len(token) > MIN_TOKEN_LENGTH
        and _ALPHABETIC.match(token)
        and token not in ENGLISH_STOP_WORDS
    ]


def item_document(item: CatalogItem) -> str:
    """Text used to vectorize an item."""
    return " ".join([item.name, item.description, item.brand, item.category])


def vocabulary_fingerprint(vocabulary: Sequence[str]) -> str:
    return hashlib.sha1("\n".join(vocabulary).encode("utf-8")).hexdigest()


class ContentVectorizer:
    """TF-IDF vectorizer with a sorted, fixed vocabulary.

    IDF is ``ln(N / df)`` over the fitting sample, and TF is the term count
    divided by the document's total token count (out-of-vocabulary tokens
    included). Every vector has one entry per vocabulary term, so documents
    with no known tokens map to an all-zero vector.

    Example:
        >>> vectorizer = ContentVectorizer().fit(["cotton shirt", "denim jeans"])
        >>> vectorizer.vocabulary
        ['cotton', 'denim', 'jeans', 'shirt']
        >>> vectorizer.transform_one("wool scarf").tolist()
        [0.0, 0.0, 0.0, 0.0]
    """

    def __init__(self):
        self.vocabulary: List[str] = []
        self.idf: Optional[np.ndarray] = None
        self.fingerprint: Optional[str] = None
        self.sample_size = 0
        self._counter: Optional[CountVectorizer] = None

    @property
    def is_fitted(self) -> bool:
        return self._counter is not None

    def __len__(self) -> int:
        return len(self.vocabulary)

    def fit(self, documents: Sequence[str]) -> "ContentVectorizer":
        """Fit vocabulary and IDF on a document sample.

        Raises:
            ValueError: If the sample contains no usable tokens.
        """
        vocabulary = sorted({token for doc in documents for token in tokenize(doc)})
        if not vocabulary:
            raise ValueError("Cannot fit vectorizer: sample has no usable tokens")

        counter = CountVectorizer(analyzer=tokenize, vocabulary=vocabulary)
        counts = counter.transform(documents)
        doc_freq = np.asarray((counts > 0).sum(axis=0)).ravel()

        self.vocabulary = vocabulary
        self.idf = np.log(len(documents) / doc_freq)
        self.fingerprint = vocabulary_fingerprint(vocabulary)
        self.sample_size = len(documents)
        self._counter = counter

        logger.info(
            f"Fitted vectorizer: {len(vocabulary)} terms from {len(documents)} documents",
            extra={"fingerprint": self.fingerprint[:12]},
        )
        return self

    def transform(self, documents: Sequence[str]) -> np.ndarray:
        """Vectorize documents; returns an array of shape (n_docs, vocab_size)."""
        if not self.is_fitted:
            raise ValueError("Vectorizer is not fitted")
        if not documents:
            return np.zeros((0, len(self.vocabulary)))

        counts = self._counter.transform(documents).astype(np.float64)
        totals = np.array([len(tokenize(doc)) for doc in documents], dtype=np.float64)
        scale = np.divide(1.0, totals, out=np.zeros_like(totals), where=totals > 0)

        tf = (diags(scale) @ counts).toarray()
        return tf * self.idf

    def transform_one(self, document: str) -> np.ndarray:
        return self.transform([document])[0]

    def metadata(self) -> Dict[str, Any]:
        return {
            "fingerprint": self.fingerprint,
            "vocabulary_size": len(self.vocabulary),
            "sample_size": self.sample_size,
        }


def classify_category(name: str) -> str:
    """Map an item name to the taxonomy; the first matching rule wins."""
    lowered = (name or "").lower()
    for label, keywords in CATEGORY_RULES:
        if any(keyword in lowered for keyword in keywords):
            return label
    return DEFAULT_CATEGORY


def needs_category(category: str) -> bool:
    return not category.strip() or category.strip().lower() == DEFAULT_CATEGORY.lower()


def effective_category(name: str, category: Optional[str]) -> str:
    """The category an item ends up with after classification."""
    category = category or ""
    return classify_category(name) if needs_category(category) else category


def sample_compatible_items(
    item_id: str,
    peers: Sequence[str],
    rng: np.random.Generator,
    count: int = DEFAULT_COMPATIBLE_COUNT,
) -> List[str]:
    """Up to ``count`` peer ids other than the item itself, uniformly shuffled."""
    candidates = [peer for peer in peers if peer != item_id]
    if not candidates:
        return []
    order = rng.permutation(len(candidates))
    return [candidates[int(i)] for i in order[:count]]


def build_category_peers(store: CatalogStore) -> Dict[str, Tuple[str, ...]]:
    """Map each effective category to the ids of its items, in cursor order."""
    rows = store.project_items(["id", "name", "category"])
    groups = group_by_key(rows, lambda row: effective_category(row["name"] or "", row["category"]))
    return {category: tuple(row["id"] for row in members) for category, members in groups.items()}


def category_statistics(rows: Iterable[Dict[str, Any]]) -> pd.DataFrame:
    """Per-category item count, mean vector length and mean compatible-item count."""
    df = pd.DataFrame(list(rows), columns=["category", "feature_vector", "compatible_items"])
    if df.empty:
        return pd.DataFrame(columns=["count", "mean_vector_length", "mean_compatible_items"])

    df["category"] = df["category"].fillna("").replace("", DEFAULT_CATEGORY)
    df["vector_length"] = df["feature_vector"].map(lambda v: len(v or []))
    df["compatible_count"] = df["compatible_items"].map(lambda v: len(v or []))

    return (
        df.groupby("category")
        .agg(
            count=("category", "size"),
            mean_vector_length=("vector_length", "mean"),
            mean_compatible_items=("compatible_count", "mean"),
        )
        .sort_index()
    )


def fit_content_vectorizer(
    store: CatalogStore,
    sample_size: int = DEFAULT_FIT_SAMPLE_SIZE,
) -> ContentVectorizer:
    """Fit the vectorizer on the first ``sample_size`` catalog items."""
    sample = store.find_items(limit=sample_size)
    return ContentVectorizer().fit([item_document(item) for item in sample])


def item_feature_patch(
    item: CatalogItem,
    vector: Optional[np.ndarray],
    peers: Dict[str, Tuple[str, ...]],
    rng: np.random.Generator,
) -> Dict[str, Any]:
    """Feature fields that change for one item.

    Args:
        item: Current item snapshot.
        vector: New feature vector, or None to keep the stored one.
        peers: Effective category -> item ids.
        rng: Random source for the compatible-item sample.
    """
    patch: Dict[str, Any] = {}
    if vector is not None:
        patch["feature_vector"] = [float(v) for v in vector]

    category = effective_category(item.name, item.category)
    if category != item.category:
        patch["category"] = category

    if not item.compatible_items:
        compatible = sample_compatible_items(item.id, peers.get(category, ()), rng)
        if compatible:
            patch["compatible_items"] = compatible

    return patch


def build_features(
    store: CatalogStore,
    context: PipelineContext,
    after: Optional[int] = None,
    sample_size: int = DEFAULT_FIT_SAMPLE_SIZE,
) -> StageReport:
    """Refresh feature vectors, categories and compatible items.

    The vectorizer is refitted on every run. When its vocabulary fingerprint
    differs from the saved artifact every item is re-vectorized; otherwise
    only items whose stored vector has the wrong length are. The fingerprint
    is saved only after a full run that did not start from a cursor.

    A sample with no usable tokens yields empty vectors; categories and
    compatible items are still maintained.
    """
    report = context.start_stage("features")
    if store.count_items() == 0:
        logger.warning("Catalog is empty, nothing to featurize")
        return report

    try:
        vectorizer: Optional[ContentVectorizer] = fit_content_vectorizer(store, sample_size)
    except ValueError as e:
        logger.warning(f"{e}; feature vectors will be empty")
        vectorizer = None

    vector_length = len(vectorizer) if vectorizer is not None else 0
    if vectorizer is not None:
        previous = load_vectorizer_metadata(context.settings.artifact_path)
        revectorize_all = (
            previous is None or previous.get("fingerprint") != vectorizer.fingerprint
        )
    else:
        revectorize_all = False
    report.extra["vocabulary_size"] = vector_length
    report.extra["vocabulary_changed"] = revectorize_all

    peers = context.caches.get(PEERS_CACHE)
    if peers is None:
        peers = build_category_peers(store)
        context.caches[PEERS_CACHE] = peers

    for batch in iter_item_batches(store, None, context.settings.batch_size, after):
        stale = [
            item for item in batch
            if revectorize_all or len(item.feature_vector) != vector_length
        ]
        vectors = {}
        if stale:
            if vectorizer is not None:
                matrix = vectorizer.transform([item_document(item) for item in stale])
            else:
                matrix = np.zeros((len(stale), 0))
            vectors = {item.id: row for item, row in zip(stale, matrix)}

        patches = []
        for item in batch:
            patch = item_feature_patch(item, vectors.get(item.id), peers, context.rng)
            if not patch:
                report.skipped += 1
                continue
            patches.append((item.id, patch))
            for name in patch:
                report.bump(name)

        if patches:
            report.add_write(store.bulk_apply_patches(patches))
        report.last_cursor = batch[-1].seq
        logger.info(
            f"Feature batch done: {report.updated} updated, {report.skipped} unchanged",
            extra={"cursor": report.last_cursor, "failed": report.failed},
        )

    # Only a full pass may record the fingerprint; a resumed or aborted run
    # leaves items before the cursor on the old vocabulary
    if vectorizer is not None and after is None:
        save_vectorizer(vectorizer, vectorizer.metadata(), context.settings.artifact_path)

    stats = category_statistics(
        store.project_items(["category", "feature_vector", "compatible_items"])
    )
    report.extra["category_stats"] = stats.to_dict(orient="index")
    logger.info(f"Category statistics:\n{stats.to_string()}")
    return report
