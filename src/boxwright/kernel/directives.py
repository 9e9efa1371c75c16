"""Directive dispatch: the handler table behind FROM, RUN, CFG, COMMIT, ...

The harness shell never touches the backend itself. Every directive call
it makes is forwarded here and dispatched by keyword against a BuildState
owned by exactly one Dispatcher.
"""

from __future__ import annotations

import json
import logging
import posixpath
import threading
from contextlib import contextmanager
from functools import partial
from typing import Callable, Dict, Iterator, List, Optional, Sequence

from pydantic import ValidationError

from .backend import BuildBackend, ContainerOp
from .cache import LABEL_CONFIG, LABEL_MANAGER, MANAGER, provenance_labels
from .errors import BoxError, DirectiveError, NoActiveContainer
from .presets import PRESETS, expand_preset
from .state import (
    BuildState,
    ConfigOp,
    ExecutionContext,
    deserialize_config,
    merge_config,
    serialize_config,
)

logger = logging.getLogger(__name__)


class CommitLocks:
    """Critical sections keyed by output image name.

    Two executions may commit concurrently, but never under the same name.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}

    @contextmanager
    def hold(self, image_name: str) -> Iterator[None]:
        with self._guard:
            lock = self._locks.setdefault(image_name, threading.Lock())
        with lock:
            yield


Handler = Callable[["Dispatcher", List[str]], Optional[str]]


class Dispatcher:
    """Services directive calls for a single execution."""

    def __init__(
        self,
        backend: BuildBackend,
        context: ExecutionContext,
        commit_locks: Optional[CommitLocks] = None,
    ):
        self.backend = backend
        self.state = BuildState(context=context)
        self.commit_locks = commit_locks or CommitLocks()
        self._lock = threading.Lock()

    @property
    def failed(self) -> bool:
        return self.state.failure is not None

    def dispatch(self, directive: str, args: Sequence[str]) -> str:
        """Run one directive; returns a short result (container id, image ref, ...).

        Raises:
            BoxError: the directive failed; the execution is now poisoned
        """
        keyword = directive.upper()
        with self._lock:
            if self.state.failure is not None:
                raise DirectiveError(
                    keyword,
                    f"execution already failed at {self.state.failed_directive}",
                )
            handler = HANDLERS.get(keyword)
            try:
                if handler is None:
                    raise DirectiveError(
                        keyword,
                        "unknown directive",
                        hint=f"Known directives: {', '.join(DIRECTIVES)}",
                    )
                logger.debug("%s: %s %s", self.state.context.name, keyword, list(args))
                return handler(self, list(args)) or ""
            except BoxError as e:
                self.state.failure = e
                self.state.failed_directive = keyword
                raise

    def close(self) -> None:
        """Release the working container if the execution left one behind."""
        container = self.state.container
        if container is None:
            return
        self.state.container = None
        if self.state.failure is None:
            logger.warning(
                "%s: working container %s was never committed; discarding it",
                self.state.context.name,
                container,
            )
        try:
            self.backend.discard(container)
        except BoxError as e:
            logger.warning("%s: failed to discard working container %s: %s",
                           self.state.context.name, container, e)

    def _require_container(self, keyword: str) -> str:
        if self.state.container is None:
            raise NoActiveContainer(keyword)
        return self.state.container

    def _resolve_source(self, src: str) -> str:
        if "://" in src or posixpath.isabs(src):
            return src
        return posixpath.join(self.state.context.workdir, src)


def _arity(keyword: str, args: List[str], minimum: int, maximum: Optional[int] = None) -> None:
    if len(args) < minimum or (maximum is not None and len(args) > maximum):
        if maximum is None:
            expected = f"at least {minimum}"
        elif maximum == minimum:
            expected = f"exactly {minimum}"
        else:
            expected = f"{minimum} to {maximum}"
        raise DirectiveError(keyword, f"expected {expected} argument(s), got {len(args)}")


def _from(d: Dispatcher, args: List[str]) -> str:
    _arity("FROM", args, 1)
    if d.state.container is not None:
        raise DirectiveError(
            "FROM",
            "a working container is already active",
            hint="COMMIT the current container before starting another one.",
        )
    image, run_args = args[0], args[1:]
    container = d.backend.begin(image, run_args)
    d.state.container = container
    d.state.base_image = image

    labels = d.backend.inspect(image) or {}
    inherited: List[ConfigOp] = []
    if labels.get(LABEL_MANAGER) == MANAGER:
        inherited = deserialize_config(labels.get(LABEL_CONFIG))
    # CFG and PRESET ops recorded before FROM follow the inherited prefix
    d.state.config = merge_config(inherited, d.state.config)

    ctx = d.state.context
    d.state.pending_labels = provenance_labels(ctx.name, ctx.path, ctx.content_hash, ctx.tree_hash)
    logger.info("%s: FROM %s -> %s (%d inherited config ops)", ctx.name, image, container, len(inherited))
    return container


def _run(d: Dispatcher, args: List[str]) -> None:
    container = d._require_container("RUN")
    _arity("RUN", args, 1)
    d.backend.mutate(container, ContainerOp(directive="RUN", args=tuple(args)))


def _add(keyword: str, d: Dispatcher, args: List[str]) -> None:
    container = d._require_container(keyword)
    _arity(keyword, args, 2)
    *sources, dest = args
    resolved = tuple(d._resolve_source(src) for src in sources)
    d.backend.mutate(container, ContainerOp(directive=keyword, args=(*resolved, dest)))


def _config_each(keyword: str, d: Dispatcher, args: List[str]) -> None:
    container = d._require_container(keyword)
    _arity(keyword, args, 1)
    d.backend.mutate(container, ContainerOp(directive=keyword, args=tuple(args)))


def _config_command(keyword: str, d: Dispatcher, args: List[str]) -> None:
    container = d._require_container(keyword)
    _arity(keyword, args, 1)
    value = args[0] if len(args) == 1 else json.dumps(args)
    d.backend.mutate(container, ContainerOp(directive=keyword, args=(value,)))


def _config_single(keyword: str, d: Dispatcher, args: List[str]) -> None:
    container = d._require_container(keyword)
    _arity(keyword, args, 1, 1)
    d.backend.mutate(container, ContainerOp(directive=keyword, args=tuple(args)))


def _cfg(d: Dispatcher, args: List[str]) -> None:
    _arity("CFG", args, 2)
    try:
        op = ConfigOp(key=args[0], values=tuple(args[1:]))
    except ValidationError as e:
        raise DirectiveError("CFG", e.errors()[0]["msg"]) from e
    d.state.append([op])


def _preset(d: Dispatcher, args: List[str]) -> None:
    _arity("PRESET", args, 1)
    ops: List[ConfigOp] = []
    for name in args:
        try:
            ops.extend(expand_preset(name))
        except KeyError:
            raise DirectiveError(
                "PRESET",
                f"unknown preset '{name}'",
                hint=f"Known presets: {', '.join(sorted(PRESETS))}",
            ) from None
    d.state.append(ops)


def _commit(d: Dispatcher, args: List[str]) -> str:
    container = d._require_container("COMMIT")
    _arity("COMMIT", args, 1, 1)
    image_name = args[0]
    labels = dict(d.state.pending_labels)
    labels[LABEL_CONFIG] = serialize_config(d.state.config)
    with d.commit_locks.hold(image_name):
        d.backend.set_labels(container, labels)
        image_ref = d.backend.commit(container, image_name)
    d.state.container = None
    # the next FROM starts from its own base image
    d.state.config = []
    d.state.images.append(image_ref)
    logger.info("%s: committed %s as %s", d.state.context.name, image_name, image_ref)
    return image_ref


HANDLERS: Dict[str, Handler] = {
    "FROM": _from,
    "RUN": _run,
    "ADD": partial(_add, "ADD"),
    "COPY": partial(_add, "COPY"),
    "CMD": partial(_config_command, "CMD"),
    "ENTRYPOINT": partial(_config_command, "ENTRYPOINT"),
    "LABEL": partial(_config_each, "LABEL"),
    "EXPOSE": partial(_config_each, "EXPOSE"),
    "ENV": partial(_config_each, "ENV"),
    "VOLUME": partial(_config_each, "VOLUME"),
    "USER": partial(_config_single, "USER"),
    "WORKDIR": partial(_config_single, "WORKDIR"),
    "CFG": _cfg,
    "PRESET": _preset,
    "COMMIT": _commit,
}

DIRECTIVES = tuple(HANDLERS)
