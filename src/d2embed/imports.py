"""Named D2 imports: the import directory, global imports and theme headers."""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Sequence, Tuple, Union

from .errors import ConfigurationError, ImportValidationError

logger = logging.getLogger(__name__)

D2_SUFFIX = ".d2"
IMPORT_MODES = ("import", "inline")

# A whole line `...@name` or `...@name.d2`.
IMPORT_DIRECTIVE_RE = re.compile(r"^\s*\.\.\.@(?P<name>[\w./-]+?)(?:\.d2)?\s*$", re.MULTILINE)

EMPTY_DIRECTORY: Mapping[str, str] = MappingProxyType({})


@dataclass(frozen=True)
class GlobalImport:
    filename: str
    mode: str = "import"

    @property
    def stem(self) -> str:
        if self.filename.endswith(D2_SUFFIX):
            return self.filename[: -len(D2_SUFFIX)]
        return self.filename


def load_import_directory(path: Optional[Union[str, Path]]) -> Mapping[str, str]:
    """Read every ``.d2`` file directly under ``path`` into a filename -> content map."""
    if path is None:
        return EMPTY_DIRECTORY
    directory = Path(path)
    try:
        entries = sorted(directory.iterdir())
    except OSError as exc:
        raise ConfigurationError(f"failed to list import directory {directory}: {exc}") from exc

    files: Dict[str, str] = {}
    for entry in entries:
        if entry.suffix != D2_SUFFIX or not entry.is_file():
            continue
        try:
            files[entry.name] = entry.read_text(encoding="utf-8")
        except OSError as exc:
            raise ConfigurationError(f"failed to read import file {entry}: {exc}") from exc
    logger.debug("loaded %d import files from %s", len(files), directory)
    return MappingProxyType(files)


def find_import_directives(source: str) -> List[str]:
    return [match.group("name") for match in IMPORT_DIRECTIVE_RE.finditer(source)]


class ThemeHeaderBuilder:
    """Assemble the per-theme prologue of global imports.

    Every configured theme is validated against the import directory up
    front; missing files are collected across all themes and reported in a
    single :class:`ImportValidationError`.
    """

    def __init__(
        self,
        import_directory: Mapping[str, str],
        global_imports: Optional[Mapping[str, Sequence[GlobalImport]]] = None,
    ) -> None:
        self._directory = import_directory
        self._imports: Dict[str, Tuple[GlobalImport, ...]] = {
            theme: tuple(entries) for theme, entries in (global_imports or {}).items()
        }
        self._validate()

    def _validate(self) -> None:
        missing: List[Tuple[str, str]] = []
        for theme, entries in self._imports.items():
            for entry in entries:
                if entry.mode not in IMPORT_MODES:
                    raise ConfigurationError(
                        f'invalid import mode "{entry.mode}" for "{entry.filename}" in theme "{theme}". '
                        f"Valid modes are: {', '.join(IMPORT_MODES)}"
                    )
                if entry.filename not in self._directory:
                    missing.append((theme, entry.filename))
        if missing:
            raise ImportValidationError(missing, self._directory.keys())

    def build(self, theme: str) -> str:
        lines: List[str] = []
        for entry in self._imports.get(theme, ()):
            if entry.mode == "import":
                lines.append(f"...@{entry.stem}")
            else:
                lines.append(self._directory[entry.filename])
        return "\n".join(lines)
