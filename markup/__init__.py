"""
Host tree collaborator.

A mutable document model built from tree-sitter HTML snapshots, with
browser-style batched mutation observation and structural query helpers.
"""

from markup.dom import Document, Element, HierarchyError, Node, Text
from markup.mutation import MutationObserver, MutationRecord
from markup.parser import (
    create_parser,
    parse_bytes,
    parse_file,
    count_error_nodes,
    load_document,
    load_document_file,
    parse_fragment,
)

__all__ = [
    # Tree model
    "Document",
    "Element",
    "HierarchyError",
    "Node",
    "Text",
    # Observation
    "MutationObserver",
    "MutationRecord",
    # Parsing
    "create_parser",
    "parse_bytes",
    "parse_file",
    "count_error_nodes",
    "load_document",
    "load_document_file",
    "parse_fragment",
]
