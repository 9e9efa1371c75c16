"""Public result models returned by the build and run drivers."""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class NodeStatus(str, Enum):
    BUILT = "built"
    CACHED = "cached"
    FAILED = "failed"
    BLOCKED = "blocked"  # a transitive dependency failed
    SKIPPED = "skipped"  # scheduling stopped before this node started


class NodeOutcome(BaseModel):
    """What happened to one definition during a build."""
    name: str
    status: NodeStatus
    tree_hash: str
    image: Optional[str] = None  # image id produced or reused
    stage: Optional[str] = None  # "cache" | "spawn" | "harness" | "directive:<KEYWORD>" on failure
    error: Optional[str] = None


class BuildReport(BaseModel):
    """One outcome per node, in build order."""
    ok: bool
    order: List[str]
    outcomes: List[NodeOutcome] = Field(default_factory=list)

    def outcome(self, name: str) -> NodeOutcome:
        for item in self.outcomes:
            if item.name == name:
                return item
        raise KeyError(name)

    def by_status(self, status: NodeStatus) -> List[str]:
        return [item.name for item in self.outcomes if item.status == status]


class UpStatus(str, Enum):
    CREATED = "created"
    EXISTS = "exists"
    REPLACED = "replaced"
    NOT_BUILT = "not_built"
    REMOVED = "removed"
    ABSENT = "absent"
    CONFLICT = "conflict"  # same name, not created by bx


class UpOutcome(BaseModel):
    name: str
    status: UpStatus
    container: Optional[str] = None
    image: Optional[str] = None
    args: List[str] = Field(default_factory=list)  # run backend args rendered from MergedConfig


class UpReport(BaseModel):
    outcomes: List[UpOutcome] = Field(default_factory=list)

    def outcome(self, name: str) -> UpOutcome:
        for item in self.outcomes:
            if item.name == name:
                return item
        raise KeyError(name)
