"""
Mutation observation for the host document.

Mirrors the browser's MutationObserver contract: records are queued at the
moment a node changes and handed to observers in batches when the owning
document runs ``deliver_mutations()``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, List, Optional, Sequence

if TYPE_CHECKING:
    from markup.dom import Node

logger = logging.getLogger(__name__)

CHILD_LIST = "childList"
ATTRIBUTES = "attributes"


@dataclass(frozen=True)
class MutationRecord:
    """A single structural change.

    Attributes:
        type: ``"childList"`` or ``"attributes"``.
        target: Node whose children or attributes changed.
        added_nodes: Nodes inserted under ``target``.
        removed_nodes: Nodes removed from ``target``.
        attribute_name: Changed attribute for ``"attributes"`` records.
        old_value: Attribute value before the change, if any.
    """

    type: str
    target: "Node"
    added_nodes: tuple = ()
    removed_nodes: tuple = ()
    attribute_name: Optional[str] = None
    old_value: Optional[str] = None


@dataclass(frozen=True)
class ObserverOptions:
    """Options passed to ``MutationObserver.observe``."""

    child_list: bool = False
    attributes: bool = False
    subtree: bool = False
    attribute_filter: Optional[frozenset] = None

    def wants(self, record: MutationRecord, is_target: bool) -> bool:
        if not is_target and not self.subtree:
            return False
        if record.type == CHILD_LIST:
            return self.child_list
        if record.type == ATTRIBUTES:
            if not self.attributes:
                return False
            if self.attribute_filter is not None:
                return record.attribute_name in self.attribute_filter
            return True
        return False


MutationCallback = Callable[[List[MutationRecord], "MutationObserver"], Any]


class MutationObserver:
    """Collects mutation records for the nodes it observes."""

    def __init__(self, callback: MutationCallback):
        if not callable(callback):
            raise TypeError("MutationObserver callback must be callable")
        self._callback = callback
        self._records: List[MutationRecord] = []
        self._targets: List["Node"] = []

    def observe(
        self,
        target: "Node",
        child_list: bool = False,
        attributes: bool = False,
        subtree: bool = False,
        attribute_filter: Optional[Sequence[str]] = None,
    ) -> None:
        """Start observing ``target``.

        Raises:
            ValueError: If neither child list nor attribute changes are requested.
        """
        if attribute_filter is not None:
            attributes = True
        if not child_list and not attributes:
            raise ValueError(
                "observe() requires child_list or attributes to be enabled"
            )
        options = ObserverOptions(
            child_list=child_list,
            attributes=attributes,
            subtree=subtree,
            attribute_filter=(
                frozenset(attribute_filter) if attribute_filter is not None else None
            ),
        )
        # Re-observing a node replaces its options.
        target._registered_observers = [
            (obs, opts) for obs, opts in target._registered_observers if obs is not self
        ]
        target._registered_observers.append((self, options))
        if not any(t is target for t in self._targets):
            self._targets.append(target)

    def disconnect(self) -> None:
        """Stop observing every target and drop queued records."""
        for target in self._targets:
            target._registered_observers = [
                (obs, opts)
                for obs, opts in target._registered_observers
                if obs is not self
            ]
        self._targets = []
        self._records = []

    def take_records(self) -> List[MutationRecord]:
        """Return and clear the queued records."""
        records = self._records
        self._records = []
        return records

    @property
    def has_pending_records(self) -> bool:
        return bool(self._records)

    def _enqueue(self, record: MutationRecord) -> None:
        self._records.append(record)

    def _deliver(self) -> int:
        records = self.take_records()
        if not records:
            return 0
        self._callback(records, self)
        return len(records)


def queue_mutation_record(record: MutationRecord) -> None:
    """Queue ``record`` on every observer interested in its target.

    Walks the inclusive ancestors of the target; each observer receives the
    record at most once even when registered on several ancestors.
    """
    notified: List[MutationObserver] = []
    node: Optional["Node"] = record.target
    is_target = True
    while node is not None:
        for observer, options in node._registered_observers:
            if any(observer is seen for seen in notified):
                continue
            if options.wants(record, is_target):
                observer._enqueue(record)
                notified.append(observer)
        node = node.parent
        is_target = False

    if notified:
        record.target.owner_document._schedule_delivery(notified)
