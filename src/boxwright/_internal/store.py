"""Definition store: locate, load, and manage ``*.box`` files on disk."""

import logging
import re
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from boxwright.codes import ErrorCode
from boxwright.kernel.definition import Definition, parse_definition
from boxwright.kernel.errors import BoxError, DefinitionNotFound, InvalidDefinition
from boxwright.kernel.graph import suggest_name

from .settings import DEFINITION_SUFFIX, Settings

logger = logging.getLogger(__name__)

NAME_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")

NEW_DEFINITION_TEMPLATE = "#!/bin/bash\n#~ depends_on = []\n\n"


class DefinitionStore:
    """Definitions searched across an ordered list of directories.

    Earlier directories shadow later ones: the first file with a given
    name wins. New definitions are written to the first directory.
    """

    def __init__(self, directories: Sequence[Path]):
        self.directories = [Path(d) for d in directories]

    @classmethod
    def from_settings(cls, settings: Settings) -> "DefinitionStore":
        return cls(settings.definition_dirs)

    @property
    def primary(self) -> Path:
        if not self.directories:
            raise BoxError(
                "Could not find a valid directory for definitions",
                code=ErrorCode.DEFINITION_NOT_FOUND,
                hint="Set one of $BOX_DEFINITION_DIR, $XDG_CONFIG_HOME or $HOME.",
            )
        return self.directories[0]

    def _files(self) -> Dict[str, Path]:
        found: Dict[str, Path] = {}
        for directory in self.directories:
            if not directory.is_dir():
                continue
            for path in sorted(directory.glob(f"*{DEFINITION_SUFFIX}")):
                if path.is_dir():
                    continue
                found.setdefault(path.stem, path)
        return found

    def names(self) -> List[str]:
        return sorted(self._files())

    def locate(self, name: str) -> Optional[Path]:
        for directory in self.directories:
            path = directory / f"{name}{DEFINITION_SUFFIX}"
            if path.is_file() or path.is_symlink():
                return path
        return None

    def exists(self, name: str) -> bool:
        return self.locate(name) is not None

    def load(self, path: Path) -> Definition:
        """Read and parse one definition file.

        Raises:
            InvalidDefinition: broken symlink, unreadable or non-UTF-8 data, bad contents
        """
        logger.debug("Loading definition from %s", path)
        if path.is_symlink() and not path.exists():
            raise InvalidDefinition(
                f"Definition at {path} is a broken symbolic link",
                path=str(path),
                hint="Is your dotfiles manager out of sync?",
            )
        try:
            text = path.read_bytes().decode("utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise InvalidDefinition(
                f"Failed to read definition at {path}: {e}",
                path=str(path),
                hint="Do you have permission issues or non-UTF-8 data?",
            ) from e
        return parse_definition(path.stem, str(path), str(path.parent), text)

    def list(self) -> List[Definition]:
        """Load every definition; all parse failures are reported together."""
        definitions = []
        errors = []
        for name, path in sorted(self._files().items()):
            try:
                definitions.append(self.load(path))
            except InvalidDefinition as e:
                errors.append(e)
        if errors:
            if len(errors) == 1:
                raise errors[0]
            details = "\n".join(f"  - {e.args[0]}" for e in errors)
            raise InvalidDefinition(f"Failed to load {len(errors)} definitions:\n{details}")
        return definitions

    def mapping(self) -> Dict[str, Definition]:
        return {d.name: d for d in self.list()}

    def resolve(self, name: str) -> Definition:
        path = self.locate(name)
        if path is None:
            raise DefinitionNotFound(
                name,
                suggestion=suggest_name(name, self.names()),
                searched=[str(d) for d in self.directories],
            )
        return self.load(path)

    def path_for(self, name: str) -> Path:
        if not NAME_PATTERN.match(name):
            raise InvalidDefinition(
                f"Invalid definition name '{name}'",
                hint="Use letters, digits, '.', '_' and '-' only.",
            )
        return self.primary / f"{name}{DEFINITION_SUFFIX}"

    def create(self, name: str, content: str = NEW_DEFINITION_TEMPLATE) -> Path:
        if self.exists(name):
            raise BoxError(
                f"Definition '{name}' already exists",
                code=ErrorCode.INVALID_DEFINITION,
                hint="You may want to edit or delete it instead.",
            )
        path = self.path_for(name)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        return path

    def write(self, name: str, content: str) -> Path:
        path = self.locate(name) or self.path_for(name)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        return path

    def delete(self, name: str) -> Path:
        path = self.locate(name)
        if path is None:
            raise DefinitionNotFound(
                name,
                suggestion=suggest_name(name, self.names()),
                searched=[str(d) for d in self.directories],
            )
        path.unlink()
        return path
