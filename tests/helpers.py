"""Shared builders for tests."""
from typing import Any, Dict


def make_record(external_id: str, **overrides) -> Dict[str, Any]:
    """A minimal record dict in the connector wire shape."""
    record = {
        "externalId": external_id,
        "title": f"Title {external_id}",
        "content": f"Content of {external_id}",
    }
    record.update(overrides)
    return record
