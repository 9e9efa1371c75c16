"""Content-addressed build cache stored in image labels.

There is no cache database: the BuildRecord of the last successful build
lives on the image it produced. A definition is fresh iff the newest image
carrying its name also carries the TreeHash computed right now.
"""

from typing import Dict, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field

from .definition import Definition
from .graph import DependencyGraph
from .hash_utils import hash_tree
from .state import ConfigOp, deserialize_config, serialize_config

MANAGER = "box"

LABEL_MANAGER = "manager"
LABEL_PATH = "box.path"
LABEL_HASH = "box.hash"
LABEL_TREE = "box.tree"
LABEL_NAME = "box.name"
LABEL_CONFIG = "box.config"


class BuildRecord(BaseModel):
    """Provenance and cache key persisted on a built image."""
    name: str
    path: str
    content_hash: str
    tree_hash: str
    config: List[ConfigOp] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True)

    def to_labels(self) -> Dict[str, str]:
        return {
            LABEL_MANAGER: MANAGER,
            LABEL_PATH: self.path,
            LABEL_HASH: self.content_hash,
            LABEL_TREE: self.tree_hash,
            LABEL_NAME: self.name,
            LABEL_CONFIG: serialize_config(self.config),
        }

    @classmethod
    def from_labels(cls, labels: Optional[Mapping[str, str]]) -> Optional["BuildRecord"]:
        """Read a record back; None for foreign images or incomplete labels."""
        if not labels or labels.get(LABEL_MANAGER) != MANAGER:
            return None
        required = (LABEL_PATH, LABEL_HASH, LABEL_TREE, LABEL_NAME)
        if any(not labels.get(key) for key in required):
            return None
        return cls(
            name=labels[LABEL_NAME],
            path=labels[LABEL_PATH],
            content_hash=labels[LABEL_HASH],
            tree_hash=labels[LABEL_TREE],
            config=deserialize_config(labels.get(LABEL_CONFIG)),
        )


def provenance_labels(name: str, path: str, content_hash: str, tree_hash: str) -> Dict[str, str]:
    """Labels recorded at FROM and written at COMMIT (config label excluded)."""
    return {
        LABEL_MANAGER: MANAGER,
        LABEL_PATH: path,
        LABEL_HASH: content_hash,
        LABEL_TREE: tree_hash,
        LABEL_NAME: name,
    }


def name_selector(name: str) -> Dict[str, str]:
    """Label selector for images produced by a given definition."""
    return {LABEL_MANAGER: MANAGER, LABEL_NAME: name}


def compute_tree_hashes(graph: DependencyGraph, order: Optional[List[str]] = None) -> Dict[str, str]:
    """TreeHash for every node, walking the build order so deps come first."""
    order = order if order is not None else graph.build_order()
    trees: Dict[str, str] = {}
    for name in order:
        definition: Definition = graph.definitions[name]
        deps = {dep: trees[dep] for dep in graph.get_dependencies(name)}
        trees[name] = hash_tree(definition.content_hash, deps)
    return trees


def is_fresh(record: Optional[BuildRecord], tree_hash: str) -> bool:
    """Cache hit iff a record exists and its TreeHash matches."""
    return record is not None and record.tree_hash == tree_hash
