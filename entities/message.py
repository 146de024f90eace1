"""
Message entity: one message of a conversation thread.

Fingerprint: an element carrying ``data-msg-id``, or a focusable ``div`` whose
direct child is a ``div[role=heading]``. Nested candidates resolve to the
outermost one, since message parts never carry their own message markers.
"""

import logging
import re
from enum import Enum
from typing import List, Optional

from detection.error_collector import ErrorCollector
from detection.finder import keep_outermost
from detection.models import EntityDescriptor, ParseRecord
from detection.parser import build_record
from markup.dom import Element, Node
from markup.query import (
    all_of,
    attr_endswith,
    attr_equals,
    first_match,
    following_siblings,
    has_attr,
    is_first_child,
    is_not_empty,
    query_all,
    query_one,
    tag_is,
)

logger = logging.getLogger(__name__)

ENTITY_NAME = "message"
MESSAGE_ID_RE = re.compile(r"msg-[^:]+:(\d+)")
CONTEXT_DEPTH = 2

is_heading = all_of(tag_is("div"), attr_equals("role", "heading"))
is_toggle_collapse = all_of(tag_is("div"), attr_endswith("jsaction", ".message_toggle_collapse"))
is_sender = all_of(has_attr("email"), is_first_child)


class MessageViewState(str, Enum):
    EXPANDED = "EXPANDED"
    COLLAPSED = "COLLAPSED"
    HIDDEN = "HIDDEN"


def is_message_candidate(el: Element) -> bool:
    if el.has_attribute("data-msg-id"):
        return True
    if el.tag != "div" or not el.has_attribute("tabindex"):
        return False
    return any(is_heading(child) for child in el.element_children)


def find_messages(root: Node) -> List[Node]:
    """Candidate message elements under ``root``, outermost only.

    ``root`` itself may be a message. Pass the Document to search the whole
    page.
    """
    candidates = query_all(root, is_message_candidate, include_self=True)
    return keep_outermost(candidates, is_message_candidate)


def _find_body(heading: Optional[Element]) -> Optional[Element]:
    # Super-collapsed (hidden) messages have no body after the heading.
    if heading is None:
        return None
    for sibling in following_siblings(heading):
        if sibling.tag == "div" and is_not_empty(sibling):
            return sibling
    return None


def _require_tabindex(el: Element) -> None:
    if not el.has_attribute("tabindex"):
        raise ValueError("expected tabindex")


def _message_id(el: Element) -> str:
    match = MESSAGE_ID_RE.search(el.get_attribute("data-msg-id") or "")
    if match is None:
        raise ValueError("data-msg-id missing or malformed")
    return format(int(match.group(1)), "x")


def _heading(el: Element) -> Element:
    heading = first_match(el, is_heading)
    if heading is None:
        raise ValueError("failed to find heading")
    return heading


def parse_message(el: Element) -> ParseRecord:
    """Extract the parts of a message element.

    Probes: tabindex, message id, heading, and sender (the sender probe only
    runs when both heading and body exist). ``loaded``, ``view_state`` and
    ``sender_email`` are derived afterwards.
    """
    ec = ErrorCollector(ENTITY_NAME)

    ec.run("tabindex", lambda: _require_tabindex(el))
    message_id = ec.run("message id", lambda: _message_id(el))
    heading = ec.run("heading", lambda: _heading(el))

    body = _find_body(heading)

    sender = None
    if heading is not None and body is not None:
        sender = ec.run("sender", lambda: query_one(heading, is_sender))

    # The last message of a thread is always loaded and has no toggle.
    toggle_collapse = first_match(el, is_toggle_collapse)

    loaded = body is not None and (
        toggle_collapse is None or toggle_collapse.get_attribute("role") == "heading"
    )
    if loaded:
        view_state = MessageViewState.EXPANDED
    elif body is not None:
        view_state = MessageViewState.COLLAPSED
    else:
        view_state = MessageViewState.HIDDEN

    return build_record(
        ec,
        elements={
            "heading": heading,
            "body": body,
            "sender": sender,
            "toggle_collapse": toggle_collapse,
        },
        attributes={
            "loaded": loaded,
            "view_state": view_state,
            "message_id": message_id,
            "sender_email": sender.get_attribute("email") if sender is not None else None,
        },
    )


def is_message_torn_down(node: Node) -> bool:
    """A tracked message whose markers were stripped no longer counts."""
    return isinstance(node, Element) and not is_message_candidate(node)


DESCRIPTOR = EntityDescriptor(
    name=ENTITY_NAME,
    find=find_messages,
    parse=parse_message,
    is_torn_down=is_message_torn_down,
    context_depth=CONTEXT_DEPTH,
)
