"""Run one definition script in a shell and service its directive calls.

Each execution gets a private Unix socket and a random token. The shell
sees only the process environment (``BX_HARNESS_*`` and ``BX_BUILD_*``)
and a prelude that defines one function per directive; each function
forwards to ``bx config`` which talks back over the socket.
"""

import hmac
import logging
import os
import shlex
import signal
import socketserver
import subprocess
import sys
import tempfile
import threading
import uuid
from typing import Dict, List, Optional

from boxwright.codes import ErrorCode
from boxwright.kernel.backend import BuildBackend
from boxwright.kernel.definition import Definition, InterpreterKind
from boxwright.kernel.directives import DIRECTIVES, CommitLocks, Dispatcher
from boxwright.kernel.errors import BoxError, BuildFailed
from boxwright.kernel.state import BuildState, ExecutionContext

from .protocol import (
    ENV_DIR,
    ENV_HASH,
    ENV_NAME,
    ENV_PATH,
    ENV_SOCKET,
    ENV_TOKEN,
    ENV_TREE,
    MAX_LINE,
    DirectiveResponse,
    decode_request,
    encode,
)

logger = logging.getLogger(__name__)

GRACE_PERIOD = 5.0


def config_command() -> str:
    """Shell words that invoke ``bx config`` with this interpreter."""
    return f"{shlex.quote(sys.executable)} -m boxwright config"


def render_prelude(kind: InterpreterKind, command: Optional[str] = None) -> str:
    """Shell functions for every directive, in the given dialect."""
    command = command or config_command()
    if kind is InterpreterKind.FISH:
        blocks = [
            f"function {keyword}\n    {command} {keyword} $argv; or exit $status\nend"
            for keyword in DIRECTIVES
        ]
        return "\n".join(blocks) + "\n"
    lines = ["set -eu"]
    lines.extend(f'{keyword}() {{ {command} {keyword} "$@" || exit $?; }}' for keyword in DIRECTIVES)
    return "\n".join(lines) + "\n"


def harness_command(definition: Definition, prelude: str) -> List[str]:
    """argv that runs the definition with the prelude loaded first."""
    argv = shlex.split(definition.interpreter)
    if definition.kind is InterpreterKind.FISH:
        return [*argv, "--init-command", prelude, definition.path]
    return [*argv, "-c", f"{prelude}{definition.script}", definition.name]


def harness_environment(context: ExecutionContext, socket_path: str, token: str) -> Dict[str, str]:
    env = dict(os.environ)
    env.update({
        ENV_SOCKET: socket_path,
        ENV_TOKEN: token,
        ENV_NAME: context.name,
        ENV_PATH: context.path,
        ENV_DIR: context.workdir,
        ENV_HASH: context.content_hash,
        ENV_TREE: context.tree_hash,
    })
    return env


class _DirectiveHandler(socketserver.StreamRequestHandler):
    def handle(self):
        line = self.rfile.readline(MAX_LINE)
        if not line:
            return
        response = self.server.respond(line)
        self.wfile.write(encode(response))


class HarnessServer(socketserver.UnixStreamServer):
    """Channel for one execution. Requests are served one at a time."""

    def __init__(self, socket_path: str, token: str, dispatcher: Dispatcher):
        self.token = token
        self.dispatcher = dispatcher
        super().__init__(socket_path, _DirectiveHandler)

    def respond(self, line: bytes) -> DirectiveResponse:
        try:
            request = decode_request(line)
        except ValueError as e:
            return DirectiveResponse(ok=False, code=ErrorCode.INVALID_CONTEXT.value, message=str(e))
        if not hmac.compare_digest(request.token.encode("utf-8"), self.token.encode("utf-8")):
            return DirectiveResponse(
                ok=False,
                code=ErrorCode.INVALID_CONTEXT.value,
                message="Harness token does not match this execution",
            )
        try:
            result = self.dispatcher.dispatch(request.directive, request.args)
        except BoxError as e:
            return DirectiveResponse(
                ok=False,
                code=e.code.value,
                message=e.args[0] if e.args else str(e),
                hint=e.hint,
            )
        return DirectiveResponse(ok=True, result=result)


class HarnessRunner:
    """Executes definitions as shell processes, one process per definition."""

    def __init__(
        self,
        backend: BuildBackend,
        commit_locks: Optional[CommitLocks] = None,
        grace_period: float = GRACE_PERIOD,
    ):
        self.backend = backend
        self.commit_locks = commit_locks or CommitLocks()
        self.grace_period = grace_period
        self._active: Dict[str, subprocess.Popen] = {}
        self._lock = threading.Lock()
        self._cancelled = threading.Event()

    def run(self, definition: Definition, context: ExecutionContext) -> BuildState:
        """Run the definition to completion.

        Raises:
            BuildFailed: spawn failure, non-zero exit, or a failed directive
        """
        dispatcher = Dispatcher(self.backend, context, self.commit_locks)
        token = uuid.uuid4().hex
        try:
            with tempfile.TemporaryDirectory(prefix="bx-harness-") as tmp:
                socket_path = os.path.join(tmp, "channel.sock")
                server = HarnessServer(socket_path, token, dispatcher)
                thread = threading.Thread(
                    target=server.serve_forever,
                    name=f"harness-{definition.name}",
                    daemon=True,
                )
                thread.start()
                try:
                    returncode = self._spawn_and_wait(definition, context, socket_path, token)
                finally:
                    server.shutdown()
                    server.server_close()
                    thread.join()
            self._check(definition, dispatcher, returncode)
        finally:
            dispatcher.close()
        return dispatcher.state

    def cancel(self) -> None:
        """Terminate every in-flight harness process group."""
        self._cancelled.set()
        with self._lock:
            procs = list(self._active.items())
        for name, proc in procs:
            logger.warning("Cancelling build of %s (pid %d)", name, proc.pid)
            _terminate(proc, self.grace_period)

    def _spawn_and_wait(
        self,
        definition: Definition,
        context: ExecutionContext,
        socket_path: str,
        token: str,
    ) -> int:
        if self._cancelled.is_set():
            raise BuildFailed(definition.name, "spawn", "build was cancelled")
        argv = harness_command(definition, render_prelude(definition.kind))
        logger.debug("Spawning harness for %s: %s", definition.name, argv[0])
        try:
            proc = subprocess.Popen(
                argv,
                cwd=definition.directory,
                env=harness_environment(context, socket_path, token),
                start_new_session=True,
            )
        except OSError as e:
            raise BuildFailed(
                definition.name,
                "spawn",
                f"could not start interpreter {argv[0]}: {e}",
            ) from e
        with self._lock:
            self._active[definition.name] = proc
        try:
            return proc.wait()
        finally:
            with self._lock:
                self._active.pop(definition.name, None)

    def _check(self, definition: Definition, dispatcher: Dispatcher, returncode: int) -> None:
        state = dispatcher.state
        if state.failure is not None:
            raise BuildFailed(
                definition.name,
                f"directive:{state.failed_directive}",
                state.failure.args[0] if state.failure.args else str(state.failure),
                cause=state.failure,
            )
        if self._cancelled.is_set():
            raise BuildFailed(definition.name, "harness", "build was cancelled")
        if returncode != 0:
            raise BuildFailed(
                definition.name,
                "harness",
                f"script exited with status {returncode}",
            )


def _terminate(proc: subprocess.Popen, grace_period: float) -> None:
    try:
        os.killpg(proc.pid, signal.SIGTERM)
    except ProcessLookupError:
        return
    try:
        proc.wait(timeout=grace_period)
    except subprocess.TimeoutExpired:
        logger.warning("Harness pid %d ignored SIGTERM; killing it", proc.pid)
        try:
            os.killpg(proc.pid, signal.SIGKILL)
        except ProcessLookupError:
            return
