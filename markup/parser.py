"""
Tree-sitter HTML parsing and host document construction.

Snapshots of the host application's rendered markup are parsed with
tree-sitter and converted into the mutable ``markup.dom`` tree the detection
engine observes.
"""

import html
import logging
from typing import List, Optional, Tuple

import tree_sitter_html as tshtml
from tree_sitter import Language, Node as TSNode, Parser, Tree

from markup.dom import Document, Element, Node

# Configure logging
logger = logging.getLogger(__name__)

# Module-level language constant
HTML_LANGUAGE = Language(tshtml.language())

ELEMENT_NODES = {"element", "script_element", "style_element"}
TAG_NODES = {"start_tag", "self_closing_tag"}
TEXT_NODES = {"text", "entity", "raw_text"}
SKIPPED_NODES = {"doctype", "comment", "end_tag", "erroneous_end_tag"}


def create_parser() -> Parser:
    """Create and configure a tree-sitter parser for HTML.

    Returns:
        A Parser instance configured with the HTML language.
    """
    parser = Parser(HTML_LANGUAGE)
    logger.debug("Created tree-sitter HTML parser")
    return parser


def parse_bytes(source: bytes) -> Tree:
    """Parse raw bytes of HTML markup.

    Args:
        source: UTF-8 encoded markup.

    Returns:
        A Tree object representing the parsed markup.

    Raises:
        TypeError: If source is not bytes.
    """
    if not isinstance(source, bytes):
        raise TypeError(f"Source must be bytes, got {type(source).__name__}")

    parser = create_parser()
    tree = parser.parse(source)

    if tree.root_node.has_error:
        logger.warning("Parsed markup contains syntax errors")

    logger.debug(f"Parsed {len(source)} bytes of HTML")
    return tree


def parse_file(file_path: str) -> Tuple[Tree, bytes]:
    """Parse an HTML snapshot from disk.

    Raises:
        FileNotFoundError: If the file does not exist.
        IOError: If the file cannot be read.
    """
    try:
        with open(file_path, "rb") as f:
            source_bytes = f.read()
    except FileNotFoundError:
        logger.error(f"File not found: {file_path}")
        raise
    except IOError as e:
        logger.error(f"Error reading file {file_path}: {e}")
        raise

    tree = parse_bytes(source_bytes)
    logger.info(f"Successfully parsed snapshot: {file_path}")
    return tree, source_bytes


def count_error_nodes(tree: Tree) -> int:
    """Count ERROR and MISSING nodes in a parsed tree."""
    count = 0
    stack = [tree.root_node]
    while stack:
        node = stack.pop()
        if node.type == "ERROR" or node.is_missing:
            count += 1
        stack.extend(node.children)
    return count


def _slice(node: TSNode, source_bytes: bytes) -> str:
    return source_bytes[node.start_byte:node.end_byte].decode("utf-8", errors="replace")


def _attribute_pair(node: TSNode, source_bytes: bytes) -> Optional[Tuple[str, str]]:
    name: Optional[str] = None
    value = ""
    for child in node.named_children:
        if child.type == "attribute_name":
            name = _slice(child, source_bytes).lower()
        elif child.type == "attribute_value":
            value = html.unescape(_slice(child, source_bytes))
        elif child.type == "quoted_attribute_value":
            # Empty quotes carry no attribute_value child.
            inner = [c for c in child.named_children if c.type == "attribute_value"]
            value = html.unescape(_slice(inner[0], source_bytes)) if inner else ""
    if not name:
        return None
    return name, value


def _create_element(node: TSNode, source_bytes: bytes, document: Document) -> Optional[Element]:
    tag_node = next((c for c in node.children if c.type in TAG_NODES), None)
    if tag_node is None:
        logger.debug(f"Element at byte {node.start_byte} has no start tag")
        return None

    tag_name = None
    attributes = {}
    for child in tag_node.named_children:
        if child.type == "tag_name":
            tag_name = _slice(child, source_bytes)
        elif child.type == "attribute":
            pair = _attribute_pair(child, source_bytes)
            if pair and pair[0] not in attributes:
                attributes[pair[0]] = pair[1]
    if not tag_name:
        return None
    return document.create_element(tag_name, attributes)


def _content_span(container: TSNode) -> Tuple[int, int]:
    """Byte range holding ``container``'s children, excluding its own tags."""
    start, end = container.start_byte, container.end_byte
    if container.type in ELEMENT_NODES:
        for child in container.children:
            if child.type in TAG_NODES:
                start = child.end_byte
            elif child.type == "end_tag":
                end = child.start_byte
    return start, end


def _text_node(
    source_bytes: bytes,
    start: int,
    end: int,
    document: Document,
    raw: bool,
    top_level: bool,
) -> Optional[Node]:
    if end <= start:
        return None
    data = source_bytes[start:end].decode("utf-8", errors="replace")
    if not raw:
        data = html.unescape(data)
    # Whitespace between top-level nodes is formatting; inside an element it is content.
    if not data or (top_level and not data.strip()):
        return None
    return document.create_text_node(data)


def _build_nodes(
    container: TSNode, source_bytes: bytes, document: Document, top_level: bool = False
) -> List[Node]:
    """Convert the content of a tree-sitter node into host nodes.

    tree-sitter treats inter-tag whitespace as extras, so text is rebuilt
    from the byte gaps between structural children rather than from text
    nodes alone.
    """
    nodes: List[Node] = []
    raw = container.type in ("script_element", "style_element")
    start, end = _content_span(container)
    cursor = start

    for child in container.children:
        if child.type in TEXT_NODES:
            continue
        text = _text_node(source_bytes, cursor, min(child.start_byte, end), document, raw, top_level)
        if text is not None:
            nodes.append(text)
        cursor = max(cursor, child.end_byte)

        if child.type in ELEMENT_NODES:
            element = _create_element(child, source_bytes, document)
            if element is None:
                continue
            for grandchild in _build_nodes(child, source_bytes, document):
                element._children.append(grandchild)
                grandchild.parent = element
            nodes.append(element)
        elif child.type == "ERROR":
            # Error recovery: keep whatever structure tree-sitter salvaged.
            nodes.extend(_build_nodes(child, source_bytes, document, top_level))
        elif child.type in SKIPPED_NODES or child.type in TAG_NODES or not child.is_named:
            continue
        else:
            logger.debug(f"Skipping unsupported markup node: {child.type}")

    text = _text_node(source_bytes, cursor, end, document, raw, top_level)
    if text is not None:
        nodes.append(text)
    return nodes


def _document_from_tree(tree: Tree, source_bytes: bytes) -> Document:
    document = Document()
    for node in _build_nodes(tree.root_node, source_bytes, document, top_level=True):
        document._children.append(node)
        node.parent = document
    return document


def load_document(source: bytes) -> Document:
    """Build a host document from HTML bytes.

    Construction happens before anyone can observe the document, so no
    mutation records are produced.
    """
    tree = parse_bytes(source)
    document = _document_from_tree(tree, source)
    logger.debug(f"Loaded document with {len(document.children)} top-level nodes")
    return document


def load_document_file(file_path: str) -> Document:
    """Build a host document from an HTML snapshot on disk."""
    tree, source_bytes = parse_file(file_path)
    return _document_from_tree(tree, source_bytes)


def parse_fragment(document: Document, source: bytes) -> List[Node]:
    """Parse ``source`` into detached nodes owned by ``document``.

    The returned nodes can be inserted with the regular mutation methods,
    which is how tests and replays simulate the host page changing.
    """
    tree = parse_bytes(source)
    return _build_nodes(tree.root_node, source, document, top_level=True)
