"""Locate diagram source blocks in a document tree."""
from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from typing import List, Mapping, Optional, Union

from .errors import MissingConfigurationError, StructuralError
from .imports import find_import_directives

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Target:
    tag_name: str = "code"
    class_name: str = "language-d2"


@dataclass(eq=False)
class Block:
    node: ET.Element
    parent: ET.Element
    source: str


def is_target(node: ET.Element, target: Target) -> bool:
    if not isinstance(node.tag, str) or _local_name(node.tag) != target.tag_name:
        return False
    return target.class_name in (node.get("class") or "").split()


def _child_nodes(node: ET.Element) -> List[Union[str, ET.Element]]:
    children: List[Union[str, ET.Element]] = []
    if node.text:
        children.append(node.text)
    for child in node:
        children.append(child)
        if child.tail:
            children.append(child.tail)
    return children


def _tag_desc(node: ET.Element) -> str:
    return f'<{_local_name(node.tag)} class="{node.get("class", "")}">'


def _extract_source(node: ET.Element) -> str:
    children = _child_nodes(node)
    if len(children) != 1:
        raise StructuralError(
            f"expected exactly one child for {_tag_desc(node)} elements, but found {len(children)}"
        )
    if not isinstance(children[0], str):
        raise StructuralError(f"expected a text child for {_tag_desc(node)} elements, but found an element")
    return children[0]


def discover_blocks(
    root: ET.Element,
    target: Target,
    import_directory: Optional[Mapping[str, str]] = None,
) -> List[Block]:
    """Collect every target block below ``root`` in document order.

    A block whose source uses ``...@name`` imports while ``import_directory``
    is ``None`` (no directory configured) fails here, before anything is
    rendered. A configured directory that lacks the named file is left to
    the engine.
    """
    blocks: List[Block] = []

    def _walk(parent: ET.Element) -> None:
        for child in list(parent):
            if is_target(child, target):
                source = _extract_source(child)
                directives = find_import_directives(source)
                if directives and import_directory is None:
                    names = ", ".join(directives)
                    raise MissingConfigurationError(
                        f"diagram imports {names} but no import directory is configured"
                    )
                blocks.append(Block(node=child, parent=parent, source=source))
                continue
            _walk(child)

    _walk(root)
    logger.debug("discovered %d diagram blocks", len(blocks))
    return blocks


def _local_name(tag: str) -> str:
    if tag.startswith("{"):
        return tag.split("}", 1)[1]
    return tag
