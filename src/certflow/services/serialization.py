"""Entity <-> document payload conversion.

Entities are plain frozen dataclasses; pydantic TypeAdapters validate
them on the way in and dump them to JSON-compatible dicts on the way
out, so stored payloads are readable by any JSONB consumer.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Any, TypeVar

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from certflow.core.errors import FieldViolation, ValidationError
from certflow.models.entities import Certificate, CertificateRequest, Document

T = TypeVar("T")

# Collection name for each persisted entity type
COLLECTIONS: dict[type, str] = {
    CertificateRequest: "certificate_requests",
    Certificate: "certificates",
    Document: "documents",
}

SHARE_TOKEN_INDEX = "share_token_index"


@lru_cache(maxsize=None)
def _adapter(entity_type: type[T]) -> TypeAdapter[T]:
    return TypeAdapter(entity_type)


def collection_for(entity_type: type) -> str:
    return COLLECTIONS[entity_type]


def to_payload(entity: Any) -> dict[str, Any]:
    """Dump an entity to a JSON-compatible dict."""
    return _adapter(type(entity)).dump_python(entity, mode="json")


def from_payload(entity_type: type[T], payload: dict[str, Any]) -> T:
    """Rebuild an entity from a stored payload.

    Raises:
        ValidationError: If the payload does not describe a valid entity.
    """
    try:
        return _adapter(entity_type).validate_python(payload)
    except PydanticValidationError as e:
        raise ValidationError(
            [
                FieldViolation(
                    field=".".join(str(part) for part in error["loc"]) or entity_type.__name__,
                    message=error["msg"],
                )
                for error in e.errors()
            ]
        ) from e
