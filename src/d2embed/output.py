"""Build the tree nodes that replace a diagram block."""
from __future__ import annotations

import base64
import io
import re
import xml.etree.ElementTree as ET
from typing import Callable, Dict, Optional
from urllib.parse import quote

from .errors import ConfigurationError, RenderError
from .metadata import Metadata

try:
    from PIL import Image
except ImportError:  # pragma: no cover - Pillow required for png encoding only
    Image = None

SVG_NS = "http://www.w3.org/2000/svg"
STRATEGIES = ("inline-svg", "inline-png")
THEME_ATTRIBUTE = "data-theme"

Encoder = Callable[[str], str]


def validate_strategy(strategy: str) -> str:
    if strategy not in STRATEGIES:
        raise ConfigurationError(
            f'Invalid strategy "{strategy}". Valid strategies are: {", ".join(STRATEGIES)}'
        )
    return strategy


def svg_data_uri(svg: str) -> str:
    """Compact ``data:image/svg+xml`` URI: whitespace collapsed, double quotes swapped for single."""
    compact = re.sub(r"\s+", " ", svg.strip()).replace('"', "'")
    return "data:image/svg+xml," + quote(compact, safe=" '/:=;,()#-.")


def png_data_uri(svg: str) -> str:
    try:
        import cairosvg
    except (ImportError, OSError) as exc:
        raise ConfigurationError(f"png encoding requires cairosvg and the cairo library: {exc}") from exc
    if Image is None:
        raise ConfigurationError("png encoding requires Pillow")
    raw = cairosvg.svg2png(bytestring=svg.encode("utf-8"))
    with Image.open(io.BytesIO(raw)) as image:
        buffer = io.BytesIO()
        image.save(buffer, format="PNG", optimize=True)
    return "data:image/png;base64," + base64.b64encode(buffer.getvalue()).decode("ascii")


ENCODERS: Dict[str, Encoder] = {
    "svg": svg_data_uri,
    "png": png_data_uri,
}


def resolve_encoder(name: str) -> Encoder:
    try:
        return ENCODERS[name]
    except KeyError:
        raise ConfigurationError(
            f'Invalid raster encoder "{name}". Valid encoders are: {", ".join(ENCODERS)}'
        ) from None


def _fmt_length(value) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


XML_NAMESPACE = "{http://www.w3.org/XML/1998/namespace}"


def _strip_namespaces(element: ET.Element) -> None:
    # xml:* attributes stay qualified; ElementTree writes them back as xml:name.
    for node in element.iter():
        if isinstance(node.tag, str) and node.tag.startswith("{"):
            node.tag = node.tag.split("}", 1)[1]
        for key in [key for key in node.attrib if key.startswith("{") and not key.startswith(XML_NAMESPACE)]:
            node.attrib[key.split("}", 1)[1]] = node.attrib.pop(key)


def build_inline_svg(svg: str, metadata: Metadata, theme: Optional[str]) -> ET.Element:
    try:
        root = ET.fromstring(svg)
    except ET.ParseError as exc:
        raise RenderError(f"rendered diagram is not well-formed SVG: {exc}") from exc
    _strip_namespaces(root)
    root.set("xmlns", SVG_NS)
    if metadata.width is not None:
        root.set("width", _fmt_length(metadata.width))
    if metadata.height is not None:
        root.set("height", _fmt_length(metadata.height))
    root.set("role", "img")
    root.set("aria-label", metadata.alt)
    root.set("title", metadata.title)
    if theme is not None:
        root.set(THEME_ATTRIBUTE, theme)
    root.tail = None
    return root


def build_inline_png(svg: str, metadata: Metadata, theme: Optional[str], encoder: Encoder = svg_data_uri) -> ET.Element:
    img = ET.Element("img", {"src": encoder(svg), "alt": metadata.alt, "title": metadata.title})
    if metadata.width is not None:
        img.set("width", _fmt_length(metadata.width))
    if metadata.height is not None:
        img.set("height", _fmt_length(metadata.height))
    if theme is not None:
        img.set(THEME_ATTRIBUTE, theme)
    return img


class OutputBuilder:
    def __init__(self, strategy: str = "inline-svg", encoder: Encoder = svg_data_uri) -> None:
        self.strategy = validate_strategy(strategy)
        self._encoder = encoder

    def build(self, svg: str, metadata: Metadata, theme: Optional[str] = None) -> ET.Element:
        """Build one output node; ``theme`` is set only when the block renders under several themes."""
        if self.strategy == "inline-svg":
            return build_inline_svg(svg, metadata, theme)
        return build_inline_png(svg, metadata, theme, self._encoder)
