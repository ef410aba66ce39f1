"""Persistence of fitted feature artifacts.

The fitted content vectorizer and its metadata (vocabulary fingerprint,
size, sample size) are saved as separate joblib files so the metadata can be
read without unpickling the vectorizer.
"""

import logging
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

import joblib

# Configure module logger
logger = logging.getLogger(__name__)

# Artifact filenames
VECTORIZER_FILENAME = "content_vectorizer.joblib"
VECTORIZER_METADATA_FILENAME = "content_vectorizer_metadata.joblib"


def get_artifact_paths(
    artifact_dir: Union[str, Path],
    vectorizer_filename: str = VECTORIZER_FILENAME,
    metadata_filename: str = VECTORIZER_METADATA_FILENAME,
) -> Tuple[Path, Path]:
    """File paths for the vectorizer and its metadata, without loading them."""
    artifact_path = Path(artifact_dir)
    return artifact_path / vectorizer_filename, artifact_path / metadata_filename


def save_vectorizer(
    vectorizer: Any,
    metadata: Dict[str, Any],
    artifact_dir: Union[str, Path],
) -> Tuple[Path, Path]:
    """Save a fitted vectorizer and its metadata.

    Creates the directory if it doesn't exist.

    Args:
        vectorizer: Fitted ContentVectorizer.
        metadata: Plain dict describing the fit (fingerprint etc.).
        artifact_dir: Directory to write to.

    Returns:
        Paths of the written vectorizer and metadata files.

    Raises:
        OSError: If the directory cannot be created or files cannot be written.
    """
    vectorizer_path, metadata_path = get_artifact_paths(artifact_dir)
    vectorizer_path.parent.mkdir(parents=True, exist_ok=True)

    joblib.dump(vectorizer, vectorizer_path)
    logger.info(f"Saved vectorizer to {vectorizer_path}")

    joblib.dump(metadata, metadata_path)
    logger.info(f"Saved vectorizer metadata to {metadata_path}")

    return vectorizer_path, metadata_path


def load_vectorizer(artifact_dir: Union[str, Path]) -> Any:
    """Load a previously saved vectorizer.

    Raises:
        FileNotFoundError: If no vectorizer has been saved in the directory.
    """
    vectorizer_path, _ = get_artifact_paths(artifact_dir)
    if not vectorizer_path.exists():
        raise FileNotFoundError(f"Vectorizer file not found: {vectorizer_path}")

    vectorizer = joblib.load(vectorizer_path)
    logger.info(f"Loaded vectorizer from {vectorizer_path}")
    return vectorizer


def load_vectorizer_metadata(artifact_dir: Union[str, Path]) -> Optional[Dict[str, Any]]:
    """Metadata of the last saved vectorizer, or None if there is none."""
    _, metadata_path = get_artifact_paths(artifact_dir)
    if not metadata_path.exists():
        return None
    return joblib.load(metadata_path)
