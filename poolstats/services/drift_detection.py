from typing import Dict, Any, Type
from pydantic import BaseModel
from poolstats.core.logging_config import get_logger

logger = get_logger("drift_detection")


def detect_drift(payload: Dict[str, Any], model: Type[BaseModel], source_name: str) -> bool:
    """
    Checks if the incoming snapshot has top-level keys that differ from the expected Pydantic model.
    Logs a warning if drift is detected. Never rejects the payload.
    """
    incoming_keys = set(payload.keys())
    drifted = False

    # A snapshot without users still yields a pool row, but usually means the pool changed format
    if "users" not in incoming_keys:
        logger.warning("potential_schema_drift", source=source_name, message="No users key found", incoming_keys=sorted(incoming_keys))
        drifted = True

    unexpected = incoming_keys - set(model.model_fields.keys())
    if unexpected:
        logger.warning("potential_schema_drift", source=source_name, message="Unexpected top-level keys", unexpected_keys=sorted(unexpected))
        drifted = True

    return drifted
