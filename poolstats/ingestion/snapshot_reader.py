import asyncio
import json
from pathlib import Path
from typing import Union

from pydantic import ValidationError

from poolstats.core.config import SNAPSHOT_FILENAME
from poolstats.core.errors import SnapshotMalformed, SnapshotUnavailable
from poolstats.core.logging_config import get_logger
from poolstats.schemas.snapshot import PoolSnapshot
from poolstats.services.drift_detection import detect_drift

logger = get_logger("snapshot_reader")


def _read_bytes(path: Path) -> bytes:
    if path.is_dir():
        path = path / SNAPSHOT_FILENAME
    try:
        return path.read_bytes()
    except OSError as e:
        raise SnapshotUnavailable(f"cannot read snapshot {path}: {e}") from e


def parse_snapshot(raw: Union[str, bytes], source_name: str = "pool_stats") -> PoolSnapshot:
    # ValueError covers bad UTF-8 and integer literals past the int digit limit as well as bad JSON
    try:
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        document = json.loads(raw)
    except (ValueError, RecursionError) as e:
        raise SnapshotMalformed(f"snapshot is not valid JSON: {e}") from e

    if not isinstance(document, dict):
        raise SnapshotMalformed(f"snapshot must be a JSON object, got {type(document).__name__}")

    detect_drift(document, PoolSnapshot, source_name)

    try:
        return PoolSnapshot.model_validate(document)
    except ValidationError as e:
        raise SnapshotMalformed(f"snapshot failed validation: {e}") from e


async def read_snapshot(path: Union[str, Path]) -> PoolSnapshot:
    """
    Loads the whole snapshot into memory and validates it.
    Raises SnapshotUnavailable if the file cannot be read, SnapshotMalformed if it cannot be parsed.
    """
    path = Path(path)
    raw = await asyncio.to_thread(_read_bytes, path)
    snapshot = parse_snapshot(raw, source_name=str(path))
    logger.info("snapshot_loaded", path=str(path), users=len(snapshot.users))
    return snapshot
