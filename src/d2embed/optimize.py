"""SVG post-optimization."""
from __future__ import annotations

import logging
from typing import Protocol

from scour import scour

logger = logging.getLogger(__name__)


class Optimizer(Protocol):
    def optimize(self, svg: str) -> str:
        ...


class ScourOptimizer:
    """Shrink rendered SVG with scour.

    Ids are kept as-is: the stylesheet d2 embeds selects on them.
    """

    def __init__(self) -> None:
        options = scour.sanitizeOptions()
        options.strip_xml_prolog = True
        options.remove_metadata = True
        options.strip_comments = True
        options.strip_ids = False
        options.shorten_ids = False
        options.quiet = True
        self._options = options

    def optimize(self, svg: str) -> str:
        optimized = scour.scourString(svg, self._options)
        logger.debug("optimized svg from %d to %d characters", len(svg), len(optimized))
        return optimized
