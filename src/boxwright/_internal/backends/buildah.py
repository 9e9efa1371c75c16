"""OCI build backend driving ``buildah``.

Working containers are plain buildah containers; labels are set with
``buildah config --label`` right before ``buildah commit --rm``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, List, Mapping, Optional, Sequence

from boxwright.kernel.backend import ContainerOp, ImageInfo
from boxwright.kernel.errors import BackendError

from .base import last_line, parse_json_output, run_tool

CONFIG_OPTIONS: Dict[str, str] = {
    "CMD": "--cmd",
    "ENTRYPOINT": "--entrypoint",
    "LABEL": "--label",
    "EXPOSE": "--port",
    "ENV": "--env",
    "VOLUME": "--volume",
    "USER": "--user",
    "WORKDIR": "--workingdir",
}


@dataclass(slots=True)
class BuildahBackend:
    name: str = "buildah"
    executable: str = "buildah"

    def _run(self, args: Sequence[str], operation: str, **kwargs):
        return run_tool([self.executable, *args], backend=self.name, operation=operation, **kwargs)

    def begin(self, base_image: str, run_args: Sequence[str] = ()) -> str:
        result = self._run(["from", *run_args, base_image], "from")
        container = last_line(result.stdout)
        if not container:
            raise BackendError(
                "buildah from did not report a container name.",
                context={"backend": self.name, "image": base_image},
            )
        return container

    def mutate(self, container: str, op: ContainerOp) -> None:
        if op.directive == "RUN":
            self._run(["run", container, "--", *op.args], "run", capture=False)
        elif op.directive == "ADD":
            self._run(["add", container, *op.args], "add")
        elif op.directive == "COPY":
            self._run(["copy", container, *op.args], "copy")
        elif op.directive in CONFIG_OPTIONS:
            option = CONFIG_OPTIONS[op.directive]
            args: List[str] = ["config"]
            for value in op.args:
                args.extend([option, value])
            self._run([*args, container], "config")
        else:
            raise BackendError(
                f"buildah backend cannot apply {op.directive}",
                context={"backend": self.name, "container": container},
            )

    def set_labels(self, container: str, labels: Mapping[str, str]) -> None:
        args: List[str] = ["config"]
        for key, value in labels.items():
            args.extend(["--label", f"{key}={value}"])
        self._run([*args, container], "config")

    def commit(self, container: str, image_name: str) -> str:
        result = self._run(["commit", "--rm", container, image_name], "commit")
        return last_line(result.stdout) or image_name

    def discard(self, container: str) -> None:
        self._run(["rm", container], "rm")

    def inspect(self, image: str) -> Optional[Dict[str, str]]:
        result = self._run(["inspect", "--type", "image", image], "inspect", allow_failure=True)
        if result.returncode != 0:
            return None
        data = parse_json_output(result, backend=self.name, operation="inspect")
        return _labels_from_inspect(data)

    def images(self, labels: Mapping[str, str]) -> List[ImageInfo]:
        args = ["images", "--json"]
        for key, value in labels.items():
            args.extend(["--filter", f"label={key}={value}"])
        result = self._run(args, "images")
        entries = parse_json_output(result, backend=self.name, operation="images") or []
        out = []
        for entry in entries:
            image_id = entry.get("id", "")
            if not image_id:
                continue
            image_labels = self.inspect(image_id) or {}
            # Filter again in case the installed buildah ignores label filters
            if any(image_labels.get(k) != v for k, v in labels.items()):
                continue
            out.append(ImageInfo(
                id=image_id,
                names=list(entry.get("names") or []),
                created=_created(entry),
                labels=image_labels,
            ))
        return out


def _labels_from_inspect(data) -> Dict[str, str]:
    if isinstance(data, list):
        data = data[0] if data else {}
    for section in ("OCIv1", "Docker"):
        config = (data.get(section) or {}).get("config") or {}
        labels = config.get("Labels") or config.get("labels")
        if labels:
            return dict(labels)
    return {}


def _created(entry) -> str:
    raw = entry.get("created")
    if isinstance(raw, (int, float)):
        return datetime.fromtimestamp(raw, tz=timezone.utc).isoformat()
    return str(entry.get("createdatraw") or entry.get("createdat") or raw or "")
