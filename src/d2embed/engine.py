"""Diagram engine interface and the default engine backed by the ``d2`` executable."""
from __future__ import annotations

import asyncio
import logging
import os
import shutil
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, List, Mapping, Optional, Protocol

from .errors import RenderError
from .metadata import Metadata

logger = logging.getLogger(__name__)

ENTRY_FILENAME = "index.d2"
D2_PATH_ENV = "D2EMBED_D2_PATH"


@dataclass(frozen=True)
class SourceBundle:
    files: Mapping[str, str]
    entry: str = ENTRY_FILENAME

    @property
    def entry_text(self) -> str:
        return self.files[self.entry]


@dataclass
class CompileResult:
    diagram: Any
    render_options: Any


class DiagramEngine(Protocol):
    async def compile(self, bundle: SourceBundle, options: Metadata) -> CompileResult:
        ...

    async def render(self, diagram: Any, render_options: Any) -> str:
        ...


@dataclass
class D2Invocation:
    bundle: SourceBundle
    arguments: List[str] = field(default_factory=list)


def _flag_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


_D2_FLAGS = (
    ("layout", "--layout"),
    ("sketch", "--sketch"),
    ("theme_id", "--theme"),
    ("dark_theme_id", "--dark-theme"),
    ("center", "--center"),
    ("pad", "--pad"),
    ("scale", "--scale"),
    ("no_xml_tag", "--no-xml-tag"),
    ("salt", "--salt"),
    ("force_appendix", "--force-appendix"),
    ("animate_interval", "--animate-interval"),
    ("target", "--target"),
)


def d2_arguments(options: Metadata) -> List[str]:
    arguments: List[str] = []
    for attr, flag in _D2_FLAGS:
        value = getattr(options, attr)
        if value is None:
            continue
        arguments.append(f"{flag}={_flag_value(value)}")
    if options.extra:
        logger.debug("d2 engine ignores options: %s", ", ".join(sorted(options.extra)))
    return arguments


class D2CliEngine:
    """Compile and render through the ``d2`` command-line tool.

    ``compile`` only checks the bundle and prepares the argument list; the
    executable does both phases in one run during ``render``, inside a
    temporary directory holding every named file so ``...@name`` imports
    resolve.
    """

    def __init__(self, executable: Optional[str] = None, *, timeout: Optional[float] = None) -> None:
        self._executable = executable or os.getenv(D2_PATH_ENV) or "d2"
        self._timeout = timeout

    def _resolve_executable(self) -> str:
        resolved = shutil.which(self._executable)
        if not resolved:
            raise RenderError(
                f'd2 executable "{self._executable}" not found; install d2 or set {D2_PATH_ENV}'
            )
        return resolved

    async def compile(self, bundle: SourceBundle, options: Metadata) -> CompileResult:
        if bundle.entry not in bundle.files:
            raise RenderError(f'entry "{bundle.entry}" missing from source bundle')
        return CompileResult(diagram=D2Invocation(bundle=bundle, arguments=d2_arguments(options)), render_options=None)

    async def render(self, diagram: Any, render_options: Any) -> str:
        if not isinstance(diagram, D2Invocation):
            raise RenderError(f"d2 engine cannot render {type(diagram).__name__}")
        executable = self._resolve_executable()
        with tempfile.TemporaryDirectory(prefix="d2embed-") as td:
            workdir = Path(td)
            for name, content in diagram.bundle.files.items():
                (workdir / name).write_text(content, encoding="utf-8")
            output = workdir / "out.svg"
            cmd = [executable, *diagram.arguments, diagram.bundle.entry, str(output)]
            logger.debug("running %s", " ".join(cmd))
            try:
                process = await asyncio.create_subprocess_exec(
                    *cmd,
                    cwd=str(workdir),
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                )
            except OSError as exc:
                raise RenderError(f"failed to execute d2: {exc}") from exc
            try:
                _stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=self._timeout)
            except asyncio.TimeoutError as exc:
                try:
                    process.kill()
                except ProcessLookupError:
                    pass
                await process.wait()
                raise RenderError(f"d2 timed out after {self._timeout} seconds") from exc

            if process.returncode != 0:
                detail = stderr.decode("utf-8", errors="replace").strip()
                if len(detail) > 240:
                    detail = detail[:240] + "..."
                raise RenderError(f"d2 failed (exit {process.returncode}): {detail or 'unknown error'}")
            try:
                return output.read_text(encoding="utf-8")
            except OSError as exc:
                raise RenderError(f"d2 produced no output: {exc}") from exc
