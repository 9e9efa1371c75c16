"""Build driver: cache check per node, then run stale nodes in build order."""

import logging
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Callable, Dict, Iterable, Optional, Protocol, Set, Tuple

from boxwright.contracts import BuildReport, NodeOutcome, NodeStatus
from boxwright.kernel.backend import BuildBackend, ImageInfo, latest_image
from boxwright.kernel.cache import BuildRecord, compute_tree_hashes, is_fresh, name_selector
from boxwright.kernel.definition import Definition
from boxwright.kernel.errors import BoxError, BuildFailed
from boxwright.kernel.graph import DependencyGraph
from boxwright.kernel.state import BuildState, ExecutionContext

logger = logging.getLogger(__name__)

DONE = (NodeStatus.BUILT, NodeStatus.CACHED)


class ScriptRunner(Protocol):
    """Executes one definition; HarnessRunner in production."""

    def run(self, definition: Definition, context: ExecutionContext) -> BuildState:
        ...

    def cancel(self) -> None:
        ...


def lookup_record(backend: BuildBackend, name: str) -> Tuple[Optional[BuildRecord], Optional[ImageInfo]]:
    """BuildRecord of the newest image built from a definition."""
    image = latest_image(backend.images(name_selector(name)))
    if image is None:
        return None, None
    return BuildRecord.from_labels(image.labels), image


class BuildDriver:
    """Schedules a DependencyGraph onto a worker pool.

    A node is submitted only once every dependency is built or cached.
    The first failure stops scheduling; in-flight nodes are allowed to
    finish.
    """

    def __init__(
        self,
        backend: BuildBackend,
        runner: ScriptRunner,
        jobs: int = 1,
        on_outcome: Optional[Callable[[NodeOutcome], None]] = None,
    ):
        self.backend = backend
        self.runner = runner
        self.jobs = max(1, jobs)
        self.on_outcome = on_outcome

    def build(self, graph: DependencyGraph, force: Iterable[str] = ()) -> BuildReport:
        order = graph.build_order()
        trees = compute_tree_hashes(graph, order)
        forced = set(force)
        outcomes: Dict[str, NodeOutcome] = {}
        pending = list(order)
        running: Dict[Future, str] = {}
        stopped = False

        pool = ThreadPoolExecutor(max_workers=self.jobs, thread_name_prefix="bx-build")
        try:
            while True:
                if not stopped:
                    for name in list(pending):
                        if len(running) >= self.jobs:
                            break
                        deps = graph.get_dependencies(name)
                        if all(dep in outcomes and outcomes[dep].status in DONE for dep in deps):
                            pending.remove(name)
                            future = pool.submit(
                                self._build_node,
                                graph.definitions[name],
                                trees[name],
                                name in forced,
                            )
                            running[future] = name
                if not running:
                    break
                done, _ = wait(running, return_when=FIRST_COMPLETED)
                for future in done:
                    name = running.pop(future)
                    outcome = future.result()
                    outcomes[name] = outcome
                    if self.on_outcome is not None:
                        self.on_outcome(outcome)
                    if outcome.status is NodeStatus.FAILED:
                        stopped = True
        except KeyboardInterrupt:
            logger.warning("Interrupted; cancelling %d running build(s)", len(running))
            self.runner.cancel()
            pool.shutdown(wait=True, cancel_futures=True)
            raise
        pool.shutdown(wait=True)

        failed: Set[str] = {n for n, o in outcomes.items() if o.status is NodeStatus.FAILED}
        for name in pending:
            if graph.get_transitive_dependencies(name) & failed:
                status = NodeStatus.BLOCKED
            else:
                status = NodeStatus.SKIPPED
            outcome = NodeOutcome(name=name, status=status, tree_hash=trees[name])
            outcomes[name] = outcome
            if self.on_outcome is not None:
                self.on_outcome(outcome)

        return BuildReport(
            ok=not failed and not pending,
            order=order,
            outcomes=[outcomes[name] for name in order],
        )

    def _build_node(self, definition: Definition, tree_hash: str, forced: bool) -> NodeOutcome:
        name = definition.name
        try:
            if not forced:
                record, image = lookup_record(self.backend, name)
                if is_fresh(record, tree_hash):
                    logger.info("%s is up to date (%s)", name, tree_hash)
                    return NodeOutcome(name=name, status=NodeStatus.CACHED, tree_hash=tree_hash,
                                       image=image.id)
        except BoxError as e:
            logger.error("Cache lookup for %s failed: %s", name, e)
            return NodeOutcome(name=name, status=NodeStatus.FAILED, tree_hash=tree_hash,
                               stage="cache", error=e.args[0] if e.args else str(e))

        for keyword in ("FROM", "COMMIT"):
            if not definition.has_directive(keyword):
                logger.warning("%s: script never calls %s", name, keyword)

        context = ExecutionContext(
            name=name,
            path=definition.path,
            workdir=definition.directory,
            content_hash=definition.content_hash,
            tree_hash=tree_hash,
        )
        logger.info("Building %s (%s)", name, tree_hash)
        try:
            state = self.runner.run(definition, context)
        except BuildFailed as e:
            logger.error("%s failed at %s: %s", name, e.stage, e.reason)
            return NodeOutcome(name=name, status=NodeStatus.FAILED, tree_hash=tree_hash,
                               stage=e.stage, error=e.reason)
        return NodeOutcome(
            name=name,
            status=NodeStatus.BUILT,
            tree_hash=tree_hash,
            image=state.images[-1] if state.images else None,
        )
