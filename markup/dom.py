"""
Mutable host document model.

A deliberately small DOM: elements, text nodes and a document root. Every
structural or attribute change queues a mutation record so observers see the
tree evolve the way a browser page does.
"""

from __future__ import annotations

import logging
from typing import Callable, Dict, Iterator, List, Optional

from markup.mutation import (
    ATTRIBUTES,
    CHILD_LIST,
    MutationObserver,
    MutationRecord,
    queue_mutation_record,
)

logger = logging.getLogger(__name__)

# Upper bound on delivery rounds when observers keep mutating the tree.
MAX_DELIVERY_ROUNDS: int = 100


class HierarchyError(ValueError):
    """Raised when an insertion would create an invalid tree."""


class Node:
    """Base class for every node in a host document."""

    def __init__(self, owner_document: Optional["Document"]):
        self.parent: Optional[Node] = None
        self._children: List[Node] = []
        self._owner_document = owner_document
        self._registered_observers: list = []

    @property
    def owner_document(self) -> "Document":
        return self._owner_document

    @property
    def children(self) -> tuple:
        """Child nodes in document order."""
        return tuple(self._children)

    @property
    def element_children(self) -> List["Element"]:
        return [c for c in self._children if isinstance(c, Element)]

    @property
    def text_content(self) -> str:
        return "".join(child.text_content for child in self._children)

    @property
    def root(self) -> "Node":
        node = self
        while node.parent is not None:
            node = node.parent
        return node

    @property
    def is_connected(self) -> bool:
        """True when the node is attached to its document."""
        return isinstance(self.root, Document)

    @property
    def previous_sibling(self) -> Optional["Node"]:
        if self.parent is None:
            return None
        siblings = self.parent._children
        idx = _index_of(siblings, self)
        return siblings[idx - 1] if idx > 0 else None

    @property
    def next_sibling(self) -> Optional["Node"]:
        if self.parent is None:
            return None
        siblings = self.parent._children
        idx = _index_of(siblings, self)
        return siblings[idx + 1] if idx + 1 < len(siblings) else None

    def contains(self, other: Optional["Node"]) -> bool:
        """Inclusive descendant check, by identity."""
        node = other
        while node is not None:
            if node is self:
                return True
            node = node.parent
        return False

    def iter_subtree(self) -> Iterator["Node"]:
        """Yield this node and its descendants in document order."""
        stack: List[Node] = [self]
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(node._children))

    def _adopt(self, node: "Node") -> None:
        # Nodes moved in from another document now report to this one.
        document = self._owner_document
        if node._owner_document is not document:
            for descendant in node.iter_subtree():
                descendant._owner_document = document

    def append_child(self, node: "Node") -> "Node":
        return self.insert_before(node, None)

    def insert_before(self, node: "Node", reference: Optional["Node"]) -> "Node":
        """Insert ``node`` before ``reference`` (or at the end).

        A node that already has a parent is moved, which queues a removal
        record on its old parent first.

        Raises:
            HierarchyError: If the insertion would create a cycle or the
                reference node is not a child of this node.
        """
        if not isinstance(node, Node) or isinstance(node, Document):
            raise HierarchyError(f"Cannot insert {type(node).__name__}")
        if node.contains(self):
            raise HierarchyError("Cannot insert a node into its own subtree")
        if reference is not None and reference.parent is not self:
            raise HierarchyError("Reference node is not a child of this node")
        if reference is node:
            reference = node.next_sibling

        if node.parent is not None:
            node.parent.remove_child(node)
        self._adopt(node)

        if reference is None:
            self._children.append(node)
        else:
            self._children.insert(_index_of(self._children, reference), node)
        node.parent = self
        queue_mutation_record(
            MutationRecord(type=CHILD_LIST, target=self, added_nodes=(node,))
        )
        return node

    def remove_child(self, node: "Node") -> "Node":
        if node.parent is not self:
            raise HierarchyError("Node is not a child of this node")
        del self._children[_index_of(self._children, node)]
        node.parent = None
        queue_mutation_record(
            MutationRecord(type=CHILD_LIST, target=self, removed_nodes=(node,))
        )
        return node

    def remove(self) -> None:
        """Detach this node from its parent, if it has one."""
        if self.parent is not None:
            self.parent.remove_child(self)

    def replace_children(self, *nodes: "Node") -> None:
        """Swap every child for ``nodes`` as one child-list mutation."""
        for node in nodes:
            if node.contains(self):
                raise HierarchyError("Cannot insert a node into its own subtree")
        for node in nodes:
            if node.parent is not None:
                node.parent.remove_child(node)
        removed = tuple(self._children)
        for child in removed:
            child.parent = None
        self._children = list(nodes)
        for node in nodes:
            self._adopt(node)
            node.parent = self
        if removed or nodes:
            queue_mutation_record(
                MutationRecord(
                    type=CHILD_LIST,
                    target=self,
                    added_nodes=tuple(nodes),
                    removed_nodes=removed,
                )
            )


class Element(Node):
    """An element with a lower-case tag name and ordered attributes."""

    def __init__(
        self,
        tag: str,
        owner_document: Optional["Document"],
        attributes: Optional[Dict[str, str]] = None,
    ):
        super().__init__(owner_document)
        self.tag = tag.lower()
        self._attributes: Dict[str, str] = dict(attributes or {})

    def __repr__(self) -> str:
        attrs = "".join(f' {k}="{v}"' for k, v in self._attributes.items())
        return f"<{self.tag}{attrs}>"

    @property
    def attributes(self) -> Dict[str, str]:
        """Copy of the attribute mapping."""
        return dict(self._attributes)

    def get_attribute(self, name: str) -> Optional[str]:
        return self._attributes.get(name.lower())

    def has_attribute(self, name: str) -> bool:
        return name.lower() in self._attributes

    def set_attribute(self, name: str, value: str) -> None:
        name = name.lower()
        old_value = self._attributes.get(name)
        self._attributes[name] = str(value)
        queue_mutation_record(
            MutationRecord(
                type=ATTRIBUTES,
                target=self,
                attribute_name=name,
                old_value=old_value,
            )
        )

    def remove_attribute(self, name: str) -> None:
        name = name.lower()
        if name not in self._attributes:
            return
        old_value = self._attributes.pop(name)
        queue_mutation_record(
            MutationRecord(
                type=ATTRIBUTES,
                target=self,
                attribute_name=name,
                old_value=old_value,
            )
        )


class Text(Node):
    """A text node."""

    def __init__(self, data: str, owner_document: Optional["Document"]):
        super().__init__(owner_document)
        self.data = data

    def __repr__(self) -> str:
        return f"Text({self.data!r})"

    @property
    def text_content(self) -> str:
        return self.data

    def insert_before(self, node: Node, reference: Optional[Node]) -> Node:
        raise HierarchyError("Text nodes cannot have children")

    def replace_children(self, *nodes: Node) -> None:
        raise HierarchyError("Text nodes cannot have children")


class Document(Node):
    """Root of a host tree; owns mutation delivery for its nodes."""

    def __init__(self):
        super().__init__(None)
        self._owner_document = self
        self._pending_observers: List[MutationObserver] = []
        self._settle_listeners: List[Callable[[], None]] = []

    def __repr__(self) -> str:
        return "<#document>"

    @property
    def document_element(self) -> Optional[Element]:
        elements = self.element_children
        return elements[0] if elements else None

    @property
    def body(self) -> Optional[Element]:
        html = self.document_element
        if html is None:
            return None
        if html.tag == "body":
            return html
        for child in html.element_children:
            if child.tag == "body":
                return child
        return None

    def create_element(
        self, tag: str, attributes: Optional[Dict[str, str]] = None
    ) -> Element:
        return Element(tag, self, attributes)

    def create_text_node(self, data: str) -> Text:
        return Text(data, self)

    def add_settle_listener(self, listener: Callable[[], None]) -> None:
        """Call ``listener`` each time ``deliver_mutations`` has run dry.

        Listeners run after every re-entrant round of a delivery, so they see
        the tree as the host left it. Mutations a listener makes are
        delivered in the same call.
        """
        if not callable(listener):
            raise TypeError("settle listener must be callable")
        if not any(existing is listener for existing in self._settle_listeners):
            self._settle_listeners.append(listener)

    def remove_settle_listener(self, listener: Callable[[], None]) -> None:
        self._settle_listeners = [
            existing for existing in self._settle_listeners if existing is not listener
        ]

    def _schedule_delivery(self, observers: List[MutationObserver]) -> None:
        for observer in observers:
            if not any(observer is pending for pending in self._pending_observers):
                self._pending_observers.append(observer)

    def deliver_mutations(self, max_rounds: int = MAX_DELIVERY_ROUNDS) -> int:
        """Hand queued records to their observers, then notify settle listeners.

        Mutations made by a callback are delivered in a following round.
        An observer callback or listener that raises is logged and does not
        stop the others.

        Returns:
            Number of records delivered.
        """
        delivered = 0
        rounds = 0
        exhausted = False
        while True:
            while self._pending_observers:
                if rounds >= max_rounds:
                    exhausted = True
                    break
                rounds += 1
                observers = self._pending_observers
                self._pending_observers = []
                for observer in observers:
                    try:
                        delivered += observer._deliver()
                    except Exception as e:
                        logger.error(
                            "Mutation observer callback failed: %s", e, exc_info=True
                        )
            self._notify_settled()
            if exhausted or not self._pending_observers:
                break

        if exhausted:
            logger.warning(
                "Mutation delivery did not settle after %d rounds; "
                "%d observers still pending",
                max_rounds,
                len(self._pending_observers),
            )
        return delivered

    def _notify_settled(self) -> None:
        for listener in list(self._settle_listeners):
            try:
                listener()
            except Exception as e:
                logger.error("Settle listener failed: %s", e, exc_info=True)


def _index_of(nodes: List[Node], node: Node) -> int:
    for idx, candidate in enumerate(nodes):
        if candidate is node:
            return idx
    raise HierarchyError("Node not found among siblings")
