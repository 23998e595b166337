#!/usr/bin/env python3
"""
Markdown Block Parser and Selector Probe

This module parses markdown documents with markdown-it-py and matches the
resulting blocks against selector definitions from schema/selectors.yml.
It answers "how many blocks does selector X match in this document?",
which is what op=count rules bound with min/max.

Supported selector kinds:
- heading (optional ``level``)
- paragraph (visible paragraphs; tight list items are excluded)
- list (optional ``ordered``)
- list_item, code, blockquote, table, hr
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from markdown_it import MarkdownIt
from markdown_it.token import Token


SUPPORTED_KINDS = (
    "heading",
    "paragraph",
    "list",
    "list_item",
    "code",
    "blockquote",
    "table",
    "hr",
)

# Opening token type -> block kind
_OPEN_TOKEN_KINDS = {
    "heading_open": "heading",
    "paragraph_open": "paragraph",
    "bullet_list_open": "list",
    "ordered_list_open": "list",
    "list_item_open": "list_item",
    "blockquote_open": "blockquote",
    "table_open": "table",
    "fence": "code",
    "code_block": "code",
    "hr": "hr",
}


@dataclass
class BlockInfo:
    """
    One block-level element of a markdown document.

    Attributes:
        kind: Block kind (one of SUPPORTED_KINDS)
        level: Heading level for headings, None otherwise
        ordered: True/False for lists, None otherwise
    """
    kind: str
    level: Optional[int] = None
    ordered: Optional[bool] = None


class MarkdownParser:
    """
    Markdown parser using the CommonMark preset with GFM tables enabled.
    """

    def __init__(self):
        self._md = MarkdownIt("commonmark").enable("table")

    def parse_markdown(self, text: str) -> List[Token]:
        """
        Parse markdown text to block tokens.

        Example:
            >>> parser = MarkdownParser()
            >>> tokens = parser.parse_markdown("# Title\\n\\nParagraph text.")
            >>> tokens[0].type
            'heading_open'
        """
        return self._md.parse(text)


_parser = MarkdownParser()


def parse_markdown(text: str) -> List[Token]:
    """Parse markdown text with the shared module-level parser."""
    return _parser.parse_markdown(text)


def extract_blocks(tokens: List[Token]) -> List[BlockInfo]:
    """
    Flatten markdown tokens into block records, in document order.

    Nested blocks (paragraphs in blockquotes, items in lists) are included
    alongside their containers.

    Example:
        >>> blocks = extract_blocks(parse_markdown("# Title\\n\\nBody."))
        >>> [(b.kind, b.level) for b in blocks]
        [('heading', 1), ('paragraph', None)]
    """
    blocks: List[BlockInfo] = []

    for token in tokens:
        kind = _OPEN_TOKEN_KINDS.get(token.type)
        if kind is None:
            continue

        # Paragraphs inside tight lists are hidden and not rendered as <p>
        if kind == "paragraph" and token.hidden:
            continue

        block = BlockInfo(kind=kind)
        if kind == "heading":
            block.level = int(token.tag[1])
        elif kind == "list":
            block.ordered = token.type == "ordered_list_open"

        blocks.append(block)

    return blocks


def selector_supported(definition: Any) -> bool:
    """True if the selector definition has a kind this module can match."""
    return isinstance(definition, dict) and definition.get("kind") in SUPPORTED_KINDS


def block_matches(block: BlockInfo, definition: Dict[str, Any]) -> bool:
    """
    Check whether a block satisfies a selector definition.

    Example:
        >>> block_matches(BlockInfo("heading", level=2), {"kind": "heading", "level": 2})
        True
        >>> block_matches(BlockInfo("heading", level=2), {"kind": "heading", "level": 1})
        False
    """
    if block.kind != definition.get("kind"):
        return False
    if "level" in definition and block.level != definition["level"]:
        return False
    if "ordered" in definition and block.ordered != bool(definition["ordered"]):
        return False
    return True


def count_matches(blocks: List[BlockInfo], definition: Dict[str, Any]) -> int:
    return sum(1 for block in blocks if block_matches(block, definition))


def probe_selectors(text: str, definitions: Dict[str, Any]) -> Dict[str, Optional[int]]:
    """
    Count matches for every selector in a markdown document.

    Args:
        text: Markdown document
        definitions: Selector name -> definition mapping

    Returns:
        Selector name -> match count, or None for unsupported definitions
    """
    blocks = extract_blocks(parse_markdown(text))
    counts: Dict[str, Optional[int]] = {}
    for name, definition in definitions.items():
        if not selector_supported(definition):
            counts[name] = None
            continue
        counts[name] = count_matches(blocks, definition)
    return counts
