"""Per-block, per-theme render metadata.

Metadata is merged from four layers, later layers winning on key collision:

1. built-in defaults (title/alt from the trimmed source, centred, no padding,
   no XML prolog, optimization on);
2. declared default metadata from the configuration;
3. inline attributes of the block node: the ``data-meta`` free-text string
   first, then the node's own attributes;
4. the theme's override layer, followed by the theme-derived render salt.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from .errors import ValidationError

if TYPE_CHECKING:
    from .discovery import Block

META_ATTRIBUTE = "data-meta"
IGNORED_ATTRIBUTES = {META_ATTRIBUTE, "class"}
DEFAULT_THEME = "default"

Scalar = Union[str, int, float, bool]
Length = Union[int, float, str]

_INT_RE = re.compile(r"^[+-]?\d+$")
_FLOAT_RE = re.compile(r"^[+-]?(?:\d+\.\d*|\.\d+|\d+)(?:[eE][+-]?\d+)?$")
_META_PAIR_RE = re.compile(r"""(?P<key>[A-Za-z_][\w-]*)=(?:"(?P<dq>[^"]*)"|'(?P<sq>[^']*)'|(?P<bare>[^\s"']+))""")


@dataclass(frozen=True)
class Derived:
    """A default metadata value computed from the block's source text."""

    fn: Callable[[str], Any]

    def resolve(self, source: str) -> Any:
        return self.fn(source)


OptionValue = Union[Scalar, List[str], Derived]


@dataclass
class Metadata:
    title: str = ""
    alt: str = ""
    width: Optional[Length] = None
    height: Optional[Length] = None
    themes: List[str] = field(default_factory=list)
    optimize: bool = True
    layout: Optional[str] = None
    sketch: Optional[bool] = None
    theme_id: Optional[int] = None
    dark_theme_id: Optional[int] = None
    center: Optional[bool] = None
    pad: Optional[Union[int, float]] = None
    scale: Optional[Union[int, float]] = None
    no_xml_tag: Optional[bool] = None
    force_appendix: Optional[bool] = None
    animate_interval: Optional[int] = None
    target: Optional[str] = None
    salt: Optional[str] = None
    extra: Dict[str, Scalar] = field(default_factory=dict)


_OPTION_TYPES: Dict[str, Tuple[type, ...]] = {
    "title": (str,),
    "alt": (str,),
    "layout": (str,),
    "target": (str,),
    "salt": (str,),
    "width": (int, float, str),
    "height": (int, float, str),
    "optimize": (bool,),
    "sketch": (bool,),
    "center": (bool,),
    "no_xml_tag": (bool,),
    "force_appendix": (bool,),
    "theme_id": (int,),
    "dark_theme_id": (int,),
    "animate_interval": (int,),
    "pad": (int, float),
    "scale": (int, float),
}
_TEXT_OPTIONS = {name for name, types in _OPTION_TYPES.items() if types == (str,)} | {"themes"}


def auto_cast(value: str) -> Scalar:
    """Cast attribute text: integer, then float, then ``true``/``false``, else the text itself."""
    text = value.strip()
    if _INT_RE.match(text):
        return int(text)
    if _FLOAT_RE.match(text):
        return float(text)
    lowered = text.lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    return value


def normalize_key(key: str) -> str:
    if key.startswith("{"):
        key = key.split("}", 1)[1]
    key = key.strip().lower()
    if key.startswith("data-"):
        key = key[len("data-"):]
    return key.replace("-", "_")


def parse_meta_string(meta: str) -> Dict[str, str]:
    """Parse ``key="value"`` / ``key=value`` pairs from a free-text attribute."""
    pairs: Dict[str, str] = {}
    for match in _META_PAIR_RE.finditer(meta):
        raw = next(group for group in (match.group("dq"), match.group("sq"), match.group("bare")) if group is not None)
        pairs[normalize_key(match.group("key"))] = raw
    return pairs


def inline_attributes(node) -> Dict[str, Scalar]:
    raw: Dict[str, str] = {}
    meta = node.get(META_ATTRIBUTE)
    if meta:
        raw.update(parse_meta_string(meta))
    for key, value in node.attrib.items():
        if key in IGNORED_ATTRIBUTES:
            continue
        raw[normalize_key(key)] = value
    return {key: value if key in _TEXT_OPTIONS else auto_cast(value) for key, value in raw.items()}


def normalize_themes(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        items = [item.strip() for item in value.split(",")]
    elif isinstance(value, bool):
        raise ValidationError(f"themes must be a comma-separated string or a list, got {value!r}")
    elif isinstance(value, (int, float)):
        items = [str(value)]
    elif isinstance(value, (list, tuple)):
        items = [str(item).strip() for item in value]
    else:
        raise ValidationError(f"themes must be a comma-separated string or a list, got {value!r}")
    themes: List[str] = []
    for item in items:
        if item and item not in themes:
            themes.append(item)
    return themes


def _evaluate(layer: Mapping[str, OptionValue], source: str) -> Dict[str, Any]:
    values: Dict[str, Any] = {}
    for key, value in layer.items():
        if isinstance(value, Derived):
            value = value.resolve(source)
        values[normalize_key(key)] = value
    return values


def _matches(value: Any, expected: Tuple[type, ...]) -> bool:
    if isinstance(value, bool):
        return bool in expected
    return isinstance(value, expected)


def _build_metadata(values: Mapping[str, Any]) -> Metadata:
    options: Dict[str, Any] = {}
    extra: Dict[str, Scalar] = {}
    for key, value in values.items():
        if value is None:
            continue
        if key == "themes":
            options[key] = value
            continue
        expected = _OPTION_TYPES.get(key)
        if expected is None:
            extra[key] = value
            continue
        if not _matches(value, expected):
            names = " or ".join(t.__name__ for t in expected)
            raise ValidationError(f'option "{key}" must be {names}, got {value!r}')
        options[key] = value
    return Metadata(extra=extra, **options)


class MetadataResolver:
    def __init__(
        self,
        defaults: Optional[Mapping[str, OptionValue]] = None,
        theme_overrides: Optional[Mapping[str, Mapping[str, OptionValue]]] = None,
        default_themes: Sequence[str] = (DEFAULT_THEME,),
    ) -> None:
        self._defaults = dict(defaults or {})
        self._theme_overrides = {theme: dict(layer) for theme, layer in (theme_overrides or {}).items()}
        self._default_themes = normalize_themes(list(default_themes))

    def resolve(self, block: "Block", theme: Optional[str] = None) -> Metadata:
        source = block.source
        trimmed = source.strip()
        merged: Dict[str, Any] = {
            "title": trimmed,
            "alt": trimmed,
            "no_xml_tag": True,
            "center": True,
            "pad": 0,
            "optimize": True,
        }
        merged.update(_evaluate(self._defaults, source))
        merged.update(inline_attributes(block.node))
        if theme is not None:
            merged.update(_evaluate(self._theme_overrides.get(theme, {}), source))
            merged["salt"] = theme

        themes = normalize_themes(merged.get("themes")) or list(self._default_themes)
        if not themes:
            raise ValidationError(
                f"no themes could be determined for <{block.node.tag}> block and no default themes are configured"
            )
        merged["themes"] = themes
        return _build_metadata(merged)
