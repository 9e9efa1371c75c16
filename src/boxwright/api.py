"""Public API for boxwright.

High-level functions that return complete, structured results. The CLI is
a thin layer over these; backends and runners can be injected for tests
and dry runs.
"""

import logging
from typing import Callable, List, Optional, Sequence

from boxwright.codes import ErrorCode
from boxwright.contracts import BuildReport, NodeOutcome, UpReport
from boxwright.kernel.backend import BuildBackend, RunBackend
from boxwright.kernel.directives import CommitLocks
from boxwright.kernel.errors import BoxError
from boxwright.kernel.graph import DependencyGraph
from boxwright._internal import runner as _runner
from boxwright._internal.backends.buildah import BuildahBackend
from boxwright._internal.backends.memory import MemoryBackend
from boxwright._internal.backends.podman import PodmanRunBackend
from boxwright._internal.harness import HarnessRunner
from boxwright._internal.scheduler import BuildDriver, ScriptRunner
from boxwright._internal.settings import Settings
from boxwright._internal.store import DefinitionStore

logger = logging.getLogger(__name__)


def make_build_backend(settings: Settings) -> BuildBackend:
    return BuildahBackend(executable=settings.builder)


def make_run_backend(settings: Settings) -> RunBackend:
    return PodmanRunBackend(executable=settings.runtime)


def _store(settings: Optional[Settings], store: Optional[DefinitionStore]) -> DefinitionStore:
    if store is not None:
        return store
    return DefinitionStore.from_settings(settings or Settings.from_env())


def resolve_graph(
    targets: Optional[Sequence[str]] = None,
    *,
    store: Optional[DefinitionStore] = None,
    settings: Optional[Settings] = None,
) -> DependencyGraph:
    """Load definitions and build the graph for targets (all when None).

    Raises:
        DefinitionNotFound, UnknownDependency, CycleDetected, InvalidDefinition
    """
    definitions = _store(settings, store).mapping()
    return DependencyGraph(definitions, targets)


def build(
    targets: Optional[Sequence[str]] = None,
    *,
    force: bool = False,
    dry_run: bool = False,
    jobs: Optional[int] = None,
    settings: Optional[Settings] = None,
    store: Optional[DefinitionStore] = None,
    backend: Optional[BuildBackend] = None,
    runner: Optional[ScriptRunner] = None,
    on_outcome: Optional[Callable[[NodeOutcome], None]] = None,
) -> BuildReport:
    """Build targets and whatever they depend on.

    ``force`` rebuilds the named targets even on a cache hit; their
    dependencies still go through the cache. ``dry_run`` executes the
    scripts against a fresh in-memory backend, so nothing is pulled or
    committed and every node counts as stale. Graph errors are raised
    before the backend is touched.
    """
    settings = settings or Settings.from_env()
    graph = resolve_graph(targets, store=store, settings=settings)
    if not graph.nodes:
        raise BoxError(
            "Nothing to build",
            code=ErrorCode.DEFINITION_NOT_FOUND,
            hint="Create a definition with `bx create <name>`.",
        )
    if backend is None:
        backend = MemoryBackend() if dry_run else make_build_backend(settings)
    runner = runner or HarnessRunner(backend, CommitLocks())
    forced: List[str] = list(graph.targets) if force else []
    driver = BuildDriver(backend, runner, jobs=jobs or settings.jobs, on_outcome=on_outcome)
    return driver.build(graph, force=forced)


def _names(
    targets: Optional[Sequence[str]],
    store: DefinitionStore,
) -> List[str]:
    if not targets:
        return store.names()
    for name in targets:
        store.resolve(name)
    return list(targets)


def up(
    targets: Optional[Sequence[str]] = None,
    *,
    replace: bool = False,
    settings: Optional[Settings] = None,
    store: Optional[DefinitionStore] = None,
    build_backend: Optional[BuildBackend] = None,
    run_backend: Optional[RunBackend] = None,
) -> UpReport:
    """Create and start containers for built definitions (all when none named)."""
    settings = settings or Settings.from_env()
    store = _store(settings, store)
    names = _names(targets, store)
    return _runner.up(
        names,
        build_backend or make_build_backend(settings),
        run_backend or make_run_backend(settings),
        replace=replace,
    )


def down(
    targets: Optional[Sequence[str]] = None,
    *,
    settings: Optional[Settings] = None,
    store: Optional[DefinitionStore] = None,
    run_backend: Optional[RunBackend] = None,
) -> UpReport:
    """Stop and remove containers created by ``up``."""
    settings = settings or Settings.from_env()
    store = _store(settings, store)
    names = _names(targets, store)
    return _runner.down(names, run_backend or make_run_backend(settings))
