"""OCI run backend driving ``podman``."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Mapping, Optional, Sequence

from boxwright.kernel.backend import ContainerInfo

from .base import last_line, parse_json_output, run_tool


@dataclass(slots=True)
class PodmanRunBackend:
    name: str = "podman"
    executable: str = "podman"

    def _run(self, args: Sequence[str], operation: str, **kwargs):
        return run_tool([self.executable, *args], backend=self.name, operation=operation, **kwargs)

    def create(
        self,
        image_ref: str,
        name: str,
        args: Sequence[str],
        labels: Mapping[str, str],
    ) -> str:
        cmd: List[str] = ["create", "--name", name]
        for key, value in labels.items():
            cmd.extend(["--label", f"{key}={value}"])
        cmd.extend(args)
        cmd.append(image_ref)
        result = self._run(cmd, "create")
        return last_line(result.stdout) or name

    def start(self, container: str) -> None:
        self._run(["start", container], "start")

    def stop(self, container: str) -> None:
        self._run(["stop", container], "stop")

    def remove(self, container: str) -> None:
        self._run(["rm", container], "rm")

    def find(self, name: str) -> Optional[ContainerInfo]:
        result = self._run(["container", "inspect", name], "inspect", allow_failure=True)
        if result.returncode != 0:
            return None
        data = parse_json_output(result, backend=self.name, operation="inspect")
        if isinstance(data, list):
            data = data[0] if data else None
        if not data:
            return None
        return ContainerInfo(
            id=data.get("Id", ""),
            name=(data.get("Name") or name).lstrip("/"),
            image_id=data.get("Image", ""),
            running=bool((data.get("State") or {}).get("Running")),
            labels=dict((data.get("Config") or {}).get("Labels") or {}),
        )
