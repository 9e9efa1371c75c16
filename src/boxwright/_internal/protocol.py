"""Wire format of the harness channel.

One JSON object per line in each direction: the shell side (``bx config``)
sends a DirectiveRequest and reads back a DirectiveResponse.
"""

import json
import os
import socket
from typing import List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from boxwright.kernel.errors import InvalidContext

ENV_SOCKET = "BX_HARNESS_SOCKET"
ENV_TOKEN = "BX_HARNESS_TOKEN"
ENV_NAME = "BX_BUILD_NAME"
ENV_PATH = "BX_BUILD_PATH"
ENV_DIR = "BX_BUILD_DIR"
ENV_HASH = "BX_BUILD_HASH"
ENV_TREE = "BX_BUILD_TREE"

MAX_LINE = 1 << 20


class DirectiveRequest(BaseModel):
    token: str
    directive: str
    args: List[str] = Field(default_factory=list)

    model_config = ConfigDict(extra="forbid")


class DirectiveResponse(BaseModel):
    ok: bool
    result: str = ""
    code: Optional[str] = None
    message: Optional[str] = None
    hint: Optional[str] = None

    model_config = ConfigDict(extra="forbid")


def encode(message: BaseModel) -> bytes:
    return (message.model_dump_json(exclude_none=True) + "\n").encode("utf-8")


def decode_request(line: bytes) -> DirectiveRequest:
    """Parse one request line; raises ValueError on malformed input."""
    try:
        return DirectiveRequest.model_validate(json.loads(line.decode("utf-8")))
    except (UnicodeDecodeError, json.JSONDecodeError, ValidationError) as e:
        raise ValueError(f"Malformed harness request: {e}") from e


def channel_from_env(environ: Optional[Mapping[str, str]] = None) -> tuple[str, str]:
    """Socket path and token of the enclosing execution.

    Raises:
        InvalidContext: not running under a harness
    """
    env = os.environ if environ is None else environ
    path = env.get(ENV_SOCKET)
    token = env.get(ENV_TOKEN)
    if not path or not token:
        raise InvalidContext()
    return path, token


def send_directive(
    directive: str,
    args: List[str],
    environ: Optional[Mapping[str, str]] = None,
) -> DirectiveResponse:
    """Forward one directive to the orchestrator and wait for its verdict."""
    path, token = channel_from_env(environ)
    request = DirectiveRequest(token=token, directive=directive, args=list(args))
    try:
        with socket.socket(socket.AF_UNIX, socket.SOCK_STREAM) as sock:
            sock.connect(path)
            sock.sendall(encode(request))
            with sock.makefile("rb") as reader:
                line = reader.readline(MAX_LINE)
    except OSError as e:
        raise InvalidContext(f"Harness channel at {path} is not reachable: {e}") from e
    if not line:
        raise InvalidContext("Harness channel closed without a response")
    try:
        return DirectiveResponse.model_validate(json.loads(line.decode("utf-8")))
    except (UnicodeDecodeError, json.JSONDecodeError, ValidationError) as e:
        raise InvalidContext(f"Malformed harness response: {e}") from e
