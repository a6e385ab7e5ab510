from functools import lru_cache
from typing import Any, Dict, Type

from jsonschema import Draft202012Validator, SchemaError, ValidationError
from pydantic import BaseModel

from focustm.logs import get_logger
from focustm.models import FocusData
from focustm.recovery import CorruptionError, FatalError

log = get_logger("data.validate")

@lru_cache(maxsize=None)
def document_schema(model: Type[BaseModel] = FocusData) -> Dict[str, Any]:
    """JSON schema for a persisted document, generated from its model."""
    schema = model.model_json_schema()
    schema["$schema"] = "https://json-schema.org/draft/2020-12/schema"
    return schema

def validate_document(data: Dict[str, Any], model: Type[BaseModel] = FocusData, source: str = "document") -> None:
    """
    Validates raw document data against the schema generated from ``model``.

    Raises:
        CorruptionError: The data does not match the schema.
        FatalError: The generated schema itself is invalid.
    """
    try:
        Draft202012Validator(document_schema(model)).validate(data)
    except ValidationError as e:
        location = "/".join(str(part) for part in e.absolute_path) or "<root>"
        log.error(f"{source} FAILED validation at {location}: {e.message}")
        raise CorruptionError(f"{source} is not a valid {model.__name__} document: {e.message} (at {location})") from e
    except SchemaError as e:
        log.critical(f"Schema for {model.__name__} is invalid: {e.message}")
        raise FatalError(f"Schema for {model.__name__} is invalid: {e.message}") from e
    log.debug(f"{source} is valid")

def is_valid_document(data: Dict[str, Any], model: Type[BaseModel] = FocusData) -> bool:
    try:
        validate_document(data, model)
    except CorruptionError:
        return False
    return True
