"""
Content hashing for ingestion records.

The hash covers only the semantic fields of a record, serialized with sorted
keys, so it is independent of key order and of volatile fields such as
updated_at.
"""
import hashlib
import json
from datetime import date, datetime
from typing import Any, Mapping, Union

from ..models_ingestion import IngestionRecord


def stable_stringify(value: Any) -> str:
    """
    Serialize a value deterministically.

    Mapping keys are sorted at every level, list order is preserved, None is
    rendered as null and datetimes as ISO-8601 strings.
    """
    if value is None:
        return "null"
    # bool is a subclass of int; check it first
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float, str)):
        return json.dumps(value, ensure_ascii=False)
    if isinstance(value, (datetime, date)):
        return json.dumps(value.isoformat(), ensure_ascii=False)
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(stable_stringify(item) for item in value) + "]"
    if isinstance(value, Mapping):
        parts = [
            f"{json.dumps(str(key), ensure_ascii=False)}:{stable_stringify(value[key])}"
            for key in sorted(value.keys(), key=str)
        ]
        return "{" + ",".join(parts) + "}"
    return json.dumps(str(value), ensure_ascii=False)


def sha256_hex(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def canonical_record(record: Union[IngestionRecord, Mapping[str, Any]]) -> dict:
    """Project a record onto the fields that define its content."""
    if isinstance(record, IngestionRecord):
        record = record.model_dump()
    else:
        record = IngestionRecord.model_validate(record).model_dump()
    return {
        "externalId": record["external_id"],
        "title": record["title"],
        "content": record["content"],
        "url": record.get("url"),
        "metadata": record.get("metadata") or {},
        "nodeType": record.get("node_type"),
        "domain": record.get("domain"),
        "references": record.get("references") or [],
        "parentExternalId": record.get("parent_external_id"),
    }


def hash_ingestion_record(record: Union[IngestionRecord, Mapping[str, Any]]) -> str:
    """SHA-256 (lowercase hex) of the canonical form of a record."""
    return sha256_hex(stable_stringify(canonical_record(record)))
