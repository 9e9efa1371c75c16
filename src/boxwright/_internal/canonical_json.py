"""JSON output for the CLI: reports and listings in one stable form."""

import json
from typing import Any

from pydantic import BaseModel


def canonical_dumps(obj: Any) -> str:
    """Serialize with sorted keys and compact separators, UTF-8 kept as-is.

    Pydantic models (build and up reports) are dumped in JSON mode first,
    so enums come out as their string values.
    """
    if isinstance(obj, BaseModel):
        obj = obj.model_dump(mode="json")
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
