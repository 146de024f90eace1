"""
Attachment preview overlay entity.

Fingerprint: a ``role=dialog`` element holding a download button, or any
element tagged ``data-test-id=overlay``. Overlays do not nest, so every
candidate is kept.
"""

import logging
from typing import List, Optional

from detection.error_collector import ErrorCollector
from detection.finder import unique_by_identity
from detection.models import EntityDescriptor, ParseRecord
from detection.parser import build_record
from markup.dom import Element, Node
from markup.query import (
    all_of,
    any_of,
    attr_equals,
    attr_startswith,
    closest,
    first_match,
    query_all,
)

logger = logging.getLogger(__name__)

ENTITY_NAME = "attachment_overlay"
CONTEXT_DEPTH = 1

is_dialog = attr_equals("role", "dialog")
is_download_button = any_of(
    attr_equals("data-test-id", "downloadButton"),
    all_of(attr_equals("role", "button"), attr_startswith("aria-label", "Download")),
)
is_close_button = all_of(attr_equals("role", "button"), attr_startswith("aria-label", "Close"))
is_title = attr_equals("role", "heading")
is_toolbar = attr_equals("role", "toolbar")


def is_overlay_candidate(el: Element) -> bool:
    if el.get_attribute("data-test-id") == "overlay":
        return True
    return is_dialog(el) and first_match(el, is_download_button) is not None


def find_attachment_overlays(root: Node) -> List[Node]:
    """Overlay candidates under ``root``; pass the Document for the whole page.

    A download button inserted deep inside an existing dialog is traced back
    up to that dialog, so narrow rescans still surface the overlay.
    """
    upward = []
    for button in query_all(root, is_download_button, include_self=True):
        dialog = closest(button, is_dialog)
        if dialog is not None and not root.contains(dialog):
            upward.append(dialog)
    # Ancestors of root come first in document order; outer before inner.
    upward.sort(key=lambda el: -sum(1 for _ in el.iter_subtree()))
    found = query_all(root, is_overlay_candidate, include_self=True)
    return unique_by_identity(upward + found)


def _download_button(el: Element) -> Element:
    button = first_match(el, is_download_button)
    if button is None:
        raise ValueError("failed to find download button")
    return button


def _button_bar(button: Optional[Element]) -> Element:
    if button is None:
        raise ValueError("download button unavailable")
    toolbar = closest(button, is_toolbar)
    if toolbar is None:
        raise ValueError("download button is not inside a toolbar")
    return toolbar


def _title(el: Element) -> Element:
    title = first_match(el, is_title)
    if title is None or not title.text_content.strip():
        raise ValueError("failed to find file title")
    return title


def _close_button(el: Element) -> Element:
    button = first_match(el, is_close_button)
    if button is None:
        raise ValueError("failed to find close button")
    return button


def parse_attachment_overlay(el: Element) -> ParseRecord:
    """Extract the download button, its toolbar, the title and close button."""
    ec = ErrorCollector(ENTITY_NAME)

    download_button = ec.run("download button", lambda: _download_button(el))
    button_bar = ec.run("button bar", lambda: _button_bar(download_button))
    title = ec.run("title", lambda: _title(el))
    close_button = ec.run("close button", lambda: _close_button(el))

    return build_record(
        ec,
        elements={
            "download_button": download_button,
            "button_bar": button_bar,
            "title": title,
            "close_button": close_button,
        },
        attributes={
            "filename": title.text_content.strip() if title is not None else None,
            "downloadable": download_button is not None,
        },
    )


def is_overlay_torn_down(node: Node) -> bool:
    """Hidden overlays linger in the tree until the next preview opens."""
    return isinstance(node, Element) and node.get_attribute("aria-hidden") == "true"


DESCRIPTOR = EntityDescriptor(
    name=ENTITY_NAME,
    find=find_attachment_overlays,
    parse=parse_attachment_overlay,
    is_torn_down=is_overlay_torn_down,
    context_depth=CONTEXT_DEPTH,
)
