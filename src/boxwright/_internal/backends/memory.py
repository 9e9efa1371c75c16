"""In-process backend: deterministic, no external tools.

Implements both the build and run protocols so tests and dry runs can
exercise the whole pipeline. Every call is appended to ``calls`` so tests
can assert that nothing touched the backend.
"""

from __future__ import annotations

import hashlib
import threading
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Sequence, Set, Tuple

from boxwright.kernel.backend import ContainerInfo, ContainerOp, ImageInfo
from boxwright.kernel.errors import BackendError


@dataclass
class WorkingContainer:
    id: str
    base_image: str
    run_args: Tuple[str, ...]
    ops: List[ContainerOp] = field(default_factory=list)
    labels: Dict[str, str] = field(default_factory=dict)


@dataclass
class StoredImage:
    id: str
    name: str
    created: str
    labels: Dict[str, str]
    ops: List[ContainerOp]


@dataclass
class RunContainer:
    id: str
    name: str
    image_id: str
    args: Tuple[str, ...]
    labels: Dict[str, str]
    running: bool = False


class MemoryBackend:
    """Build and run backend that keeps everything in dictionaries.

    ``RUN false`` fails like a shell would; any RUN whose first argument is
    listed in ``failing_commands`` fails too. Base images that were never
    committed here are assumed to exist upstream with no labels.
    """

    name = "memory"

    def __init__(self, failing_commands: Optional[Set[str]] = None):
        self.failing_commands = set(failing_commands or ()) | {"false"}
        self.calls: List[Tuple[str, ...]] = []
        self.working: Dict[str, WorkingContainer] = {}
        self.images_by_id: Dict[str, StoredImage] = {}
        self.tags: Dict[str, str] = {}
        self.containers: Dict[str, RunContainer] = {}
        self._counter = 0
        self._lock = threading.Lock()

    def _next_id(self, kind: str, seed: str) -> Tuple[int, str]:
        self._counter += 1
        digest = hashlib.sha256(f"{kind}:{self._counter}:{seed}".encode("utf-8")).hexdigest()
        return self._counter, digest[:12]

    def _record(self, *call: str) -> None:
        self.calls.append(tuple(call))

    # Build protocol

    def begin(self, base_image: str, run_args: Sequence[str] = ()) -> str:
        with self._lock:
            self._record("begin", base_image, *run_args)
            _, cid = self._next_id("working", base_image)
            container = f"{base_image.rsplit('/', 1)[-1].split(':')[0]}-working-{cid}"
            self.working[container] = WorkingContainer(container, base_image, tuple(run_args))
            return container

    def mutate(self, container: str, op: ContainerOp) -> None:
        with self._lock:
            self._record("mutate", container, op.directive, *op.args)
            working = self._working(container)
            if op.directive == "RUN" and op.args and op.args[0] in self.failing_commands:
                raise BackendError(
                    f"RUN {' '.join(op.args)} exited with status 1",
                    context={"backend": self.name, "container": container},
                )
            working.ops.append(op)

    def set_labels(self, container: str, labels: Mapping[str, str]) -> None:
        with self._lock:
            self._record("set_labels", container)
            self._working(container).labels.update(labels)

    def commit(self, container: str, image_name: str) -> str:
        with self._lock:
            self._record("commit", container, image_name)
            working = self.working.pop(container, None)
            if working is None:
                raise BackendError(f"No working container {container}",
                                   context={"backend": self.name})
            seq, image_id = self._next_id("image", image_name)
            self.images_by_id[image_id] = StoredImage(
                id=image_id,
                name=image_name,
                created=f"{seq:012d}",
                labels=dict(working.labels),
                ops=list(working.ops),
            )
            self.tags[image_name] = image_id
            return image_id

    def discard(self, container: str) -> None:
        with self._lock:
            self._record("discard", container)
            if self.working.pop(container, None) is None:
                raise BackendError(f"No working container {container}",
                                   context={"backend": self.name})

    def inspect(self, image: str) -> Optional[Dict[str, str]]:
        with self._lock:
            self._record("inspect", image)
            stored = self._image(image)
            return dict(stored.labels) if stored is not None else None

    def images(self, labels: Mapping[str, str]) -> List[ImageInfo]:
        with self._lock:
            self._record("images", *(f"{k}={v}" for k, v in sorted(labels.items())))
            out = []
            for stored in self.images_by_id.values():
                if all(stored.labels.get(k) == v for k, v in labels.items()):
                    names = [tag for tag, image_id in self.tags.items() if image_id == stored.id]
                    out.append(ImageInfo(id=stored.id, names=names, created=stored.created,
                                         labels=dict(stored.labels)))
            return out

    def _working(self, container: str) -> WorkingContainer:
        try:
            return self.working[container]
        except KeyError:
            raise BackendError(f"No working container {container}",
                               context={"backend": self.name}) from None

    def _image(self, ref: str) -> Optional[StoredImage]:
        image_id = self.tags.get(ref, ref)
        return self.images_by_id.get(image_id)

    # Run protocol

    def create(
        self,
        image_ref: str,
        name: str,
        args: Sequence[str],
        labels: Mapping[str, str],
    ) -> str:
        with self._lock:
            self._record("create", image_ref, name, *args)
            if name in self.containers:
                raise BackendError(f"Container name {name} is already in use",
                                   context={"backend": self.name})
            stored = self._image(image_ref)
            if stored is None:
                raise BackendError(f"Image {image_ref} not found", context={"backend": self.name})
            _, cid = self._next_id("container", name)
            self.containers[name] = RunContainer(cid, name, stored.id, tuple(args), dict(labels))
            return cid

    def start(self, container: str) -> None:
        with self._lock:
            self._record("start", container)
            self._container(container).running = True

    def stop(self, container: str) -> None:
        with self._lock:
            self._record("stop", container)
            self._container(container).running = False

    def remove(self, container: str) -> None:
        with self._lock:
            self._record("remove", container)
            found = self._container(container)
            del self.containers[found.name]

    def find(self, name: str) -> Optional[ContainerInfo]:
        with self._lock:
            self._record("find", name)
            found = self.containers.get(name)
            if found is None:
                return None
            return ContainerInfo(id=found.id, name=found.name, image_id=found.image_id,
                                 running=found.running, labels=dict(found.labels))

    def _container(self, ref: str) -> RunContainer:
        for found in self.containers.values():
            if ref in (found.id, found.name):
                return found
        raise BackendError(f"No container {ref}", context={"backend": self.name})

    # Helpers for tests and dry runs

    def image_labels(self, image_name: str) -> Dict[str, str]:
        stored = self._image(image_name)
        return dict(stored.labels) if stored is not None else {}

    def image_ops(self, image_name: str) -> List[ContainerOp]:
        stored = self._image(image_name)
        return list(stored.ops) if stored is not None else []

    def calls_of(self, kind: str) -> List[Tuple[str, ...]]:
        return [call for call in self.calls if call[0] == kind]
