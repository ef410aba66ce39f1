"""Streaming reader for newline-delimited JSON datasets.

Reads one line at a time so memory stays flat no matter how large the input
file is. Bad lines are skipped and counted instead of aborting the stream.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterator, Union

from catalogsync.config import DEFAULT_PROGRESS_EVERY
from catalogsync.exceptions import MalformedRecordError

# Configure module logger
logger = logging.getLogger(__name__)


def parse_line(line: str, path: str = "<memory>", line_number: int = 0) -> Dict[str, Any]:
    """Parse one JSONL line into a dict.

    Raises:
        MalformedRecordError: If the line is not valid JSON or not an object.
    """
    try:
        record = json.loads(line)
    except json.JSONDecodeError as e:
        raise MalformedRecordError(path, line_number, f"invalid JSON ({e.msg})") from e

    if not isinstance(record, dict):
        raise MalformedRecordError(
            path, line_number, f"expected an object, got {type(record).__name__}"
        )
    return record


class JsonlReader:
    """Lazy, re-iterable reader over a JSONL file.

    Each iteration reopens the file and starts from the first line; counters
    are reset at the start of every pass.

    Attributes:
        records: Records yielded during the current/last pass.
        malformed: Lines skipped as malformed during the current/last pass.

    Example:
        >>> reader = JsonlReader("data/meta.jsonl")
        >>> for record in reader:
        ...     handle(record)
        >>> print(reader.records, reader.malformed)
    """

    def __init__(
        self,
        path: Union[str, Path],
        progress_every: int = DEFAULT_PROGRESS_EVERY,
    ):
        self.path = Path(path)
        self.progress_every = progress_every
        self.records = 0
        self.malformed = 0

        if not self.path.exists():
            raise FileNotFoundError(f"JSONL file not found: {self.path}")

    def __iter__(self) -> Iterator[Dict[str, Any]]:
        self.records = 0
        self.malformed = 0
        logger.info(f"Streaming records from {self.path}")

        with self.path.open("r", encoding="utf-8") as f:
            for line_number, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue

                try:
                    record = parse_line(line, str(self.path), line_number)
                except MalformedRecordError as e:
                    self.malformed += 1
                    logger.debug(e.message)
                    continue

                self.records += 1
                if self.records % self.progress_every == 0:
                    logger.info(
                        f"Read {self.records:,} records from {self.path.name}",
                        extra={"records": self.records, "malformed": self.malformed},
                    )
                yield record

        logger.info(
            f"Finished {self.path.name}: {self.records:,} records, "
            f"{self.malformed:,} malformed lines skipped"
        )
