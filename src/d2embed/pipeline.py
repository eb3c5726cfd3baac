"""Render every D2 block of a document tree and splice the results in place."""
from __future__ import annotations

import asyncio
import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from .discovery import Block, Target, discover_blocks
from .engine import ENTRY_FILENAME, D2CliEngine, DiagramEngine, SourceBundle
from .errors import ConfigurationError, D2EmbedError, RenderError
from .imports import GlobalImport, ThemeHeaderBuilder, load_import_directory
from .metadata import DEFAULT_THEME, MetadataResolver, OptionValue
from .optimize import Optimizer, ScourOptimizer
from .output import OutputBuilder, resolve_encoder

logger = logging.getLogger(__name__)


@dataclass
class EmbedConfig:
    strategy: str = "inline-svg"
    target: Target = field(default_factory=Target)
    import_dir: Optional[Union[str, Path]] = None
    default_themes: List[str] = field(default_factory=lambda: [DEFAULT_THEME])
    metadata: Dict[str, OptionValue] = field(default_factory=dict)
    theme_metadata: Dict[str, Dict[str, OptionValue]] = field(default_factory=dict)
    global_imports: Dict[str, List[GlobalImport]] = field(default_factory=dict)
    raster_encoder: str = "svg"

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "EmbedConfig":
        """Build a config from JSON-shaped data.

        ``target`` is ``{"tag_name": ..., "class_name": ...}``; global imports
        are ``{theme: [{"file": ..., "mode": "import"|"inline"}, ...]}`` or
        bare filenames, which import by reference.
        """
        known = {"strategy", "target", "import_dir", "default_themes", "metadata", "theme_metadata", "global_imports", "raster_encoder"}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigurationError(f"unknown configuration keys: {', '.join(unknown)}")

        config = cls()
        if "strategy" in data:
            config.strategy = data["strategy"]
        if "target" in data:
            try:
                config.target = Target(**data["target"])
            except TypeError as exc:
                raise ConfigurationError(f"invalid target: {exc}") from exc
        if "import_dir" in data:
            config.import_dir = data["import_dir"]
        if "default_themes" in data:
            themes = data["default_themes"]
            config.default_themes = [t.strip() for t in themes.split(",")] if isinstance(themes, str) else list(themes)
        if "metadata" in data:
            config.metadata = dict(data["metadata"])
        if "theme_metadata" in data:
            config.theme_metadata = {theme: dict(layer) for theme, layer in data["theme_metadata"].items()}
        if "global_imports" in data:
            config.global_imports = {
                theme: [_global_import(entry) for entry in entries]
                for theme, entries in data["global_imports"].items()
            }
        if "raster_encoder" in data:
            config.raster_encoder = data["raster_encoder"]
        return config


def _global_import(entry: Any) -> GlobalImport:
    if isinstance(entry, str):
        return GlobalImport(entry)
    if isinstance(entry, Mapping) and "file" in entry:
        return GlobalImport(entry["file"], entry.get("mode", "import"))
    raise ConfigurationError(f"invalid global import entry: {entry!r}")


class D2Embedder:
    """Replace every target block of a tree with its rendered diagrams.

    Configuration problems (strategy, import directory, global imports) are
    reported when the embedder is constructed. Each run discovers all blocks
    first, so structural and import-directory errors abort before the engine
    is called. Blocks then render concurrently; a failing block leaves the
    others to finish and the first failure is raised once all have settled.
    """

    def __init__(
        self,
        config: Optional[EmbedConfig] = None,
        *,
        engine: Optional[DiagramEngine] = None,
        optimizer: Optional[Optimizer] = None,
    ) -> None:
        self.config = config or EmbedConfig()
        self._output = OutputBuilder(self.config.strategy, resolve_encoder(self.config.raster_encoder))
        self.import_directory = load_import_directory(self.config.import_dir)
        self._headers = ThemeHeaderBuilder(self.import_directory, self.config.global_imports)
        self._resolver = MetadataResolver(
            self.config.metadata,
            self.config.theme_metadata,
            self.config.default_themes,
        )
        self._engine = engine or D2CliEngine()
        self._optimizer = optimizer or ScourOptimizer()

    def run(self, root: ET.Element) -> ET.Element:
        asyncio.run(self.process(root))
        return root

    async def process(self, root: ET.Element) -> None:
        configured = self.import_directory if self.config.import_dir is not None else None
        blocks = discover_blocks(root, self.config.target, configured)
        if not blocks:
            return
        failures: List[BaseException] = []

        async def _guarded(block: Block) -> None:
            try:
                await self._process_block(block)
            except Exception as exc:
                logger.debug("block failed: %s", exc)
                failures.append(exc)

        await asyncio.gather(*(_guarded(block) for block in blocks))
        if failures:
            logger.debug("%d of %d blocks failed", len(failures), len(blocks))
            raise failures[0]

    async def _process_block(self, block: Block) -> None:
        base = self._resolver.resolve(block)
        themes = base.themes
        multi_theme = len(themes) > 1
        results = await asyncio.gather(
            *(self._render_theme(block, theme, multi_theme) for theme in themes),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, BaseException):
                raise result
        self._splice(block, list(results))

    async def _render_theme(self, block: Block, theme: str, multi_theme: bool) -> ET.Element:
        header = self._headers.build(theme)
        metadata = self._resolver.resolve(block, theme)
        text = f"{header}\n{block.source}" if header else block.source
        bundle = SourceBundle(files={**self.import_directory, ENTRY_FILENAME: text}, entry=ENTRY_FILENAME)
        try:
            compiled = await self._engine.compile(bundle, metadata)
            svg = await self._engine.render(compiled.diagram, compiled.render_options)
        except D2EmbedError:
            raise
        except Exception as exc:
            raise RenderError(f'failed to render diagram for theme "{theme}": {exc}') from exc
        if not isinstance(svg, str) or not svg.strip():
            raise RenderError(f'engine returned no SVG for theme "{theme}" (got {type(svg).__name__})')
        logger.debug("rendered theme %s (%d characters)", theme, len(svg))
        if metadata.optimize:
            try:
                svg = await asyncio.to_thread(self._optimizer.optimize, svg)
            except Exception as exc:
                raise RenderError(f'failed to optimize diagram for theme "{theme}": {exc}') from exc
        return self._output.build(svg, metadata, theme if multi_theme else None)

    @staticmethod
    def _splice(block: Block, outputs: Sequence[ET.Element]) -> None:
        parent = block.parent
        index = next((i for i, child in enumerate(parent) if child is block.node), None)
        if index is None:
            raise RenderError("diagram block was detached from its parent before rendering finished")
        outputs[-1].tail = block.node.tail
        parent[index:index + 1] = outputs


def embed_diagrams(root: ET.Element, config: Optional[EmbedConfig] = None, **kwargs: Any) -> ET.Element:
    """Render all D2 blocks in ``root`` in place and return it."""
    return D2Embedder(config, **kwargs).run(root)
