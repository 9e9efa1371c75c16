"""Runtime configuration operations, build state, and inheritance merge.

The config accumulator is an append-only log. Inheritance is a prefix:
a child's accumulator starts as a copy of its parent image's stored ops
and its own CFG/PRESET calls are appended. Nothing is deduplicated here;
repeated ops reach the run backend in order, where the last one wins.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from pydantic import BaseModel, ConfigDict, TypeAdapter, field_validator

from .errors import BackendError, BoxError
from .hash_utils import canonicalize_json

# CFG key -> run backend flag. "args" is passed through verbatim.
CONFIG_FLAGS: Dict[str, Optional[str]] = {
    "mount": "--mount",
    "device": "--device",
    "env": "--env",
    "network": "--network",
    "hostname": "--hostname",
    "args": None,
}


class ConfigOp(BaseModel):
    """One runtime-configuration operation, e.g. ``mount src=/tmp,dst=/m``."""
    key: str
    values: tuple[str, ...]

    model_config = ConfigDict(frozen=True, extra="forbid")

    @field_validator('key')
    @classmethod
    def validate_key(cls, v: str) -> str:
        if v not in CONFIG_FLAGS:
            raise ValueError(f"Unknown config key '{v}' (expected one of: {', '.join(CONFIG_FLAGS)})")
        return v

    @field_validator('values')
    @classmethod
    def validate_values(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        if not v:
            raise ValueError("Config operation needs at least one value")
        return v

    def __str__(self) -> str:
        return " ".join((self.key, *self.values))

    def to_run_args(self) -> List[str]:
        """Render this op as run backend arguments."""
        flag = CONFIG_FLAGS[self.key]
        if flag is None:
            return list(self.values)
        out = []
        for value in self.values:
            if self.key == "mount" and "type=" not in value:
                value = f"type=bind,{value}"
            out.extend([flag, value])
        return out


_OPS_ADAPTER = TypeAdapter(List[ConfigOp])


def serialize_config(ops: Sequence[ConfigOp]) -> str:
    """Canonical JSON form stored in the ``box.config`` image label."""
    return canonicalize_json([{"key": op.key, "values": list(op.values)} for op in ops])


def deserialize_config(raw: Optional[str]) -> List[ConfigOp]:
    """Parse a ``box.config`` label; missing label means no inherited config."""
    if not raw:
        return []
    try:
        return _OPS_ADAPTER.validate_python(json.loads(raw))
    except ValueError as e:
        raise BackendError(
            f"Stored config label is corrupt: {e}",
            hint="Rebuild the parent definition with --force.",
        ) from e


def merge_config(inherited: Sequence[ConfigOp], own: Sequence[ConfigOp]) -> List[ConfigOp]:
    """Fold config base to leaf: ancestor ops first, most specific last."""
    return [*inherited, *own]


class MergedConfig(BaseModel):
    """Ordered runtime configuration applied when creating a container."""
    ops: tuple[ConfigOp, ...] = ()

    model_config = ConfigDict(frozen=True)

    def to_run_args(self) -> List[str]:
        args: List[str] = []
        for op in self.ops:
            args.extend(op.to_run_args())
        return args


class ExecutionContext(BaseModel):
    """What an execution knows about the definition it is building."""
    name: str
    path: str
    workdir: str
    content_hash: str
    tree_hash: str

    model_config = ConfigDict(frozen=True)


@dataclass
class BuildState:
    """Per-execution state, exclusively owned by one dispatcher.

    ``container`` is the working container handle between FROM and COMMIT.
    ``failure`` holds the first directive error; once set the execution is
    poisoned and nothing else may run, COMMIT included.
    """
    context: ExecutionContext
    container: Optional[str] = None
    base_image: Optional[str] = None
    config: List[ConfigOp] = field(default_factory=list)
    pending_labels: Dict[str, str] = field(default_factory=dict)
    images: List[str] = field(default_factory=list)
    failure: Optional[BoxError] = None
    failed_directive: Optional[str] = None

    @property
    def active(self) -> bool:
        return self.container is not None

    def append(self, ops: Sequence[ConfigOp]) -> None:
        self.config = merge_config(self.config, ops)
