from typing import Any, Dict, Iterable, List, Type, TypeVar

from pydantic import BaseModel, ValidationError

from tokensync.core.config import get_settings
from tokensync.core.errors import SchemaDriftError
from tokensync.core.logging_config import get_logger

logger = get_logger("drift_detection")

M = TypeVar("M", bound=BaseModel)


def expected_keys(model: Type[BaseModel]) -> set:
    return {field.alias or name for name, field in model.model_fields.items()}


def detect_drift(payload: Dict[str, Any], model: Type[BaseModel], source_name: str) -> bool:
    """
    Compares the top-level keys of a response row with the fields of the model it
    is parsed into. Logs a warning and returns True when they differ.
    """
    incoming = set(payload.keys())
    expected = expected_keys(model)
    required = {
        field.alias or name for name, field in model.model_fields.items() if field.is_required()
    }

    unexpected = incoming - expected
    missing = required - incoming
    if unexpected or missing:
        logger.warning(
            "potential_schema_drift",
            source=source_name,
            model=model.__name__,
            unexpected_keys=sorted(unexpected),
            missing_keys=sorted(missing),
        )
        return True
    return False


def parse_rows(model: Type[M], rows: Iterable[Any], source_name: str, strict: bool | None = None) -> List[M]:
    """
    Validates raw response rows against `model`.

    Invalid rows are logged and dropped so a malformed response degrades to
    "no data". With `strict` (default: STRICT_SCHEMA setting) the first invalid
    row raises SchemaDriftError instead.
    """
    if strict is None:
        strict = get_settings().STRICT_SCHEMA

    parsed = []
    checked = False
    for row in rows or []:
        if not checked and isinstance(row, dict):
            detect_drift(row, model, source_name)
            checked = True
        try:
            parsed.append(model.model_validate(row))
        except ValidationError as e:
            if strict:
                raise SchemaDriftError(f"{source_name}: {e}") from e
            logger.warning("invalid_row_dropped", source=source_name, model=model.__name__, error=str(e))
    return parsed
