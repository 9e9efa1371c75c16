"""Protocols for the OCI build and run backends the orchestrator drives."""

from __future__ import annotations

from typing import Dict, List, Mapping, Optional, Protocol, Sequence

from pydantic import BaseModel, ConfigDict, Field


class ContainerOp(BaseModel):
    """A mutation of a working container, named after the directive."""
    directive: str
    args: tuple[str, ...] = ()

    model_config = ConfigDict(frozen=True)


class ImageInfo(BaseModel):
    """Summary of an image as reported by the build backend."""
    id: str
    names: List[str] = Field(default_factory=list)
    created: str = ""  # ISO 8601; compared lexically
    labels: Dict[str, str] = Field(default_factory=dict)


class ContainerInfo(BaseModel):
    """Summary of a container as reported by the run backend."""
    id: str
    name: str
    image_id: str = ""
    running: bool = False
    labels: Dict[str, str] = Field(default_factory=dict)


class BuildBackend(Protocol):
    name: str

    def begin(self, base_image: str, run_args: Sequence[str] = ()) -> str:
        """Create a working container from base_image and return its handle."""

    def mutate(self, container: str, op: ContainerOp) -> None:
        """Apply one directive to the working container."""

    def set_labels(self, container: str, labels: Mapping[str, str]) -> None:
        """Attach labels that the next commit will carry."""

    def commit(self, container: str, image_name: str) -> str:
        """Commit the working container as image_name and release it."""

    def discard(self, container: str) -> None:
        """Remove a working container without committing it."""

    def inspect(self, image: str) -> Optional[Dict[str, str]]:
        """Labels of an image, or None if it does not exist."""

    def images(self, labels: Mapping[str, str]) -> List[ImageInfo]:
        """Images carrying all of the given labels."""


class RunBackend(Protocol):
    name: str

    def create(
        self,
        image_ref: str,
        name: str,
        args: Sequence[str],
        labels: Mapping[str, str],
    ) -> str:
        """Create (but do not start) a container and return its id."""

    def start(self, container: str) -> None:
        """Start a created or stopped container."""

    def stop(self, container: str) -> None:
        """Stop a running container."""

    def remove(self, container: str) -> None:
        """Remove a container."""

    def find(self, name: str) -> Optional[ContainerInfo]:
        """Look up a container by name."""


def latest_image(images: Sequence[ImageInfo]) -> Optional[ImageInfo]:
    """Most recently created image; ties broken by id for determinism."""
    if not images:
        return None
    return max(images, key=lambda image: (image.created, image.id))
