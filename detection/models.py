"""
Data models for detected entities and watch events.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from detection.config import DEFAULT_CONTEXT_DEPTH
from detection.error_collector import ProbeError
from markup.dom import Element, Node

FinderFn = Callable[[Node], List[Node]]
ParserFn = Callable[[Node], "ParseRecord"]
TeardownFn = Callable[[Node], bool]


def describe_node(node: Optional[Node]) -> Optional[Dict[str, Any]]:
    """Summarize a node for JSON output; nodes themselves are not serializable."""
    if node is None:
        return None
    if isinstance(node, Element):
        return {"tag": node.tag, "attributes": node.attributes}
    return {"text": node.text_content}


def _json_value(value: Any) -> Any:
    if isinstance(value, Node):
        return describe_node(value)
    if isinstance(value, Enum):
        return value.value
    return value


@dataclass
class ParseRecord:
    """Result of running an entity parser against one candidate.

    Attributes:
        elements: Probe name -> extracted element, or None when the probe
            failed or found nothing.
        attributes: Attribute name -> extracted or derived value.
        score: ``1 - len(errors) / probe_count``, within [0, 1].
        errors: Probe failures in run order.
        probe_count: Number of probes that ran.
    """

    elements: Dict[str, Optional[Node]]
    attributes: Dict[str, Any]
    score: float
    errors: List[ProbeError] = field(default_factory=list)
    probe_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        """Convert the record to a dictionary suitable for JSON serialization."""
        return {
            "elements": {k: describe_node(v) for k, v in self.elements.items()},
            "attributes": {k: _json_value(v) for k, v in self.attributes.items()},
            "score": self.score,
            "errors": [e.to_dict() for e in self.errors],
            "probe_count": self.probe_count,
        }


@dataclass(frozen=True, eq=False)
class Match:
    """A tracked candidate. Two matches are equal only if they are the same object;
    identity of the underlying node is compared with ``is``."""

    node: Node
    record: ParseRecord
    first_seen: float

    @property
    def score(self) -> float:
        return self.record.score

    def to_dict(self) -> Dict[str, Any]:
        return {
            "node": describe_node(self.node),
            "first_seen": self.first_seen,
            **self.record.to_dict(),
        }


class EventKind(str, Enum):
    ADDED = "ADDED"
    REMOVED = "REMOVED"


@dataclass(frozen=True)
class WatchEvent:
    """An ADDED or REMOVED notification carrying its match."""

    kind: EventKind
    match: Match

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind.value, **self.match.to_dict()}


@dataclass(frozen=True)
class EntityDescriptor:
    """Static pairing of an entity name with its finder and parser.

    Attributes:
        name: Entity type name, e.g. ``"message"``.
        find: ``find(root)`` returning candidate nodes in document order.
        parse: ``parse(candidate)`` returning a ParseRecord.
        is_torn_down: Optional entity-specific signal that a still-attached
            node no longer represents the entity.
        context_depth: Ancestor levels above an added node rescanned by
            watchers, so a node completing an existing structure is noticed.

    Raises:
        TypeError: If ``find``, ``parse`` or ``is_torn_down`` is not callable.
        ValueError: If ``name`` is empty or ``context_depth`` is negative.
    """

    name: str
    find: FinderFn
    parse: ParserFn
    is_torn_down: Optional[TeardownFn] = None
    context_depth: int = DEFAULT_CONTEXT_DEPTH

    def __post_init__(self):
        if not isinstance(self.name, str) or not self.name.strip():
            raise ValueError("EntityDescriptor.name must be a non-empty string")
        if not callable(self.find):
            raise TypeError(f"Entity '{self.name}': find must be callable")
        if not callable(self.parse):
            raise TypeError(f"Entity '{self.name}': parse must be callable")
        if self.is_torn_down is not None and not callable(self.is_torn_down):
            raise TypeError(f"Entity '{self.name}': is_torn_down must be callable")
        if (
            isinstance(self.context_depth, bool)
            or not isinstance(self.context_depth, int)
            or self.context_depth < 0
        ):
            raise ValueError(
                f"Entity '{self.name}': context_depth must be a non-negative int"
            )
