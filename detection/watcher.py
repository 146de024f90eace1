"""
Generic watcher over an entity's finder/parser pair.

A Watcher scans its root once, then follows the host document's mutation
batches and keeps a de-duplicated set of tracked matches, emitting ADDED and
REMOVED events. Everything runs synchronously inside batch delivery.

A tracked node that detaches is only marked pending while the rounds of a
delivery run. Once the document reports the delivery settled, nodes still
detached are reported REMOVED, followed by the additions that were held
back behind them, so a node moved within one delivery never flickers.

Example:
    >>> watcher = Watcher(document, descriptor, min_score=0.5)
    >>> watcher.subscribe(print)
    >>> watcher.start()
    >>> ...  # host page changes, document.deliver_mutations() runs
    >>> watcher.stop()
"""

import logging
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Deque, Dict, Iterator, List, Optional

from core.structured_logging import batch_scope, entity_scope
from detection.config import REMOVAL_GRACE_DELIVERIES
from detection.finder import run_finder, unique_by_identity
from detection.models import EntityDescriptor, EventKind, Match, WatchEvent
from detection.parser import run_parser
from detection.reporting import DetectionReporter
from markup.dom import Document, Node
from markup.mutation import ATTRIBUTES, CHILD_LIST, MutationObserver, MutationRecord

logger = logging.getLogger(__name__)

EventCallback = Callable[[WatchEvent], None]
EndCallback = Callable[[], None]


class WatcherState(str, Enum):
    CREATED = "CREATED"
    RUNNING = "RUNNING"
    STOPPED = "STOPPED"


@dataclass
class _Tracked:
    match: Match
    # Delivery index at which the node was first seen detached, if it is.
    pending_since: Optional[int] = None


class Subscription:
    """Handle returned by ``Watcher.subscribe``."""

    def __init__(self, watcher: "Watcher", on_event: EventCallback, on_end: Optional[EndCallback]):
        self._watcher = watcher
        self.on_event = on_event
        self.on_end = on_end
        self.active = True

    def unsubscribe(self) -> None:
        if self.active:
            self.active = False
            self._watcher._remove_subscription(self)


class EventStream:
    """Pull-style view of a watcher's events.

    Iteration yields the events buffered so far and stops when the buffer is
    empty; ``ended`` turns True once the watcher has sent its end signal and
    every buffered event has been consumed.
    """

    def __init__(self, watcher: "Watcher"):
        self._buffer: Deque[WatchEvent] = deque()
        self._end_received = False
        self._subscription = watcher.subscribe(self._buffer.append, self._on_end)

    def _on_end(self) -> None:
        self._end_received = True

    @property
    def ended(self) -> bool:
        return self._end_received and not self._buffer

    def __iter__(self) -> Iterator[WatchEvent]:
        return self

    def __next__(self) -> WatchEvent:
        if self._buffer:
            return self._buffer.popleft()
        raise StopIteration

    def drain(self) -> List[WatchEvent]:
        """Return and clear every buffered event."""
        events = list(self._buffer)
        self._buffer.clear()
        return events

    def close(self) -> None:
        """Stop receiving events; buffered ones stay readable."""
        self._subscription.unsubscribe()


class Watcher:
    """Tracks instances of one entity type under ``root``.

    Args:
        root: Subtree to watch; the Document watches the whole tree.
        descriptor: The entity's finder/parser pair.
        min_score: Acceptance threshold; ``None`` accepts every score and
            leaves filtering to the consumer.
        removal_grace: Extra settled deliveries a detached match may stay
            pending before it is reported REMOVED. With 0, a node still
            detached when its delivery settles is removed right then. A node
            reattached within the grace period stays tracked without events.
        reporter: Outcome reporter; a private one is created if omitted.
        clock: Time source for ``Match.first_seen``.

    Raises:
        TypeError: If ``root`` is not a Node or ``descriptor`` is not an
            EntityDescriptor.
        ValueError: If ``min_score`` is outside [0, 1] or ``removal_grace``
            is negative.
    """

    def __init__(
        self,
        root: Node,
        descriptor: EntityDescriptor,
        min_score: Optional[float] = None,
        removal_grace: int = REMOVAL_GRACE_DELIVERIES,
        reporter: Optional[DetectionReporter] = None,
        clock: Callable[[], float] = time.time,
    ):
        if not isinstance(root, Node):
            raise TypeError(f"Watcher root must be a markup Node, got {type(root).__name__}")
        if not isinstance(descriptor, EntityDescriptor):
            raise TypeError(
                f"Watcher needs an EntityDescriptor, got {type(descriptor).__name__}"
            )
        if min_score is not None and not 0.0 <= float(min_score) <= 1.0:
            raise ValueError(f"min_score must be within [0, 1], got {min_score}")
        if isinstance(removal_grace, bool) or not isinstance(removal_grace, int) or removal_grace < 0:
            raise ValueError(f"removal_grace must be a non-negative int, got {removal_grace!r}")

        self.root = root
        self.descriptor = descriptor
        self.min_score = None if min_score is None else float(min_score)
        self.removal_grace = removal_grace
        self.reporter = reporter or DetectionReporter()
        self._clock = clock

        self._state = WatcherState.CREATED
        self._known: Dict[int, _Tracked] = {}
        self._subscriptions: List[Subscription] = []
        self._observer: Optional[MutationObserver] = None
        self._document: Optional[Document] = None
        self._held: Dict[int, WatchEvent] = {}
        self._delivery_index = 0
        self._require_connection = False
        self._batch_index = 0
        self._processing = False
        self._backlog: List[List[MutationRecord]] = []

    def __repr__(self) -> str:
        return (
            f"Watcher(entity={self.descriptor.name!r}, state={self._state.value}, "
            f"tracked={len(self._known)})"
        )

    def __enter__(self) -> "Watcher":
        return self.start()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()

    # -- subscriptions ---------------------------------------------------

    def subscribe(
        self, on_event: EventCallback, on_end: Optional[EndCallback] = None
    ) -> Subscription:
        """Register callbacks for events and for the end signal.

        Subscribing to a stopped watcher only delivers the end signal.
        """
        if not callable(on_event):
            raise TypeError("on_event must be callable")
        if on_end is not None and not callable(on_end):
            raise TypeError("on_end must be callable")
        subscription = Subscription(self, on_event, on_end)
        if self._state is WatcherState.STOPPED:
            subscription.active = False
            self._safe_call(on_end, "end callback")
            return subscription
        self._subscriptions.append(subscription)
        return subscription

    def stream(self) -> EventStream:
        """Create a pull-style event stream; create it before ``start()``
        to see the initial scan."""
        return EventStream(self)

    def _remove_subscription(self, subscription: Subscription) -> None:
        self._subscriptions = [s for s in self._subscriptions if s is not subscription]

    # -- state -----------------------------------------------------------

    @property
    def state(self) -> WatcherState:
        return self._state

    @property
    def matches(self) -> List[Match]:
        """Tracked matches in discovery order."""
        return [t.match for t in self._known.values()]

    @property
    def tracked_count(self) -> int:
        return len(self._known)

    @property
    def pending_removal_count(self) -> int:
        return sum(1 for t in self._known.values() if t.pending_since is not None)

    def is_tracking(self, node: Node) -> bool:
        tracked = self._known.get(id(node))
        return tracked is not None and tracked.match.node is node

    # -- lifecycle -------------------------------------------------------

    def start(self) -> "Watcher":
        """Run the initial scan and begin following mutations.

        Raises:
            RuntimeError: If the watcher was already started or stopped.
        """
        if self._state is not WatcherState.CREATED:
            raise RuntimeError(f"Cannot start a watcher in state {self._state.value}")
        self._state = WatcherState.RUNNING
        self._require_connection = self.root.is_connected

        with entity_scope(self.descriptor.name):
            logger.info("Starting %s watcher under %r", self.descriptor.name, self.root)
            events = self._collect_additions([self.root], set())
            self._apply_and_emit(events)
            if self._state is not WatcherState.RUNNING:
                return self

            self._observer = MutationObserver(self._on_mutations)
            self._observer.observe(
                self.root, child_list=True, attributes=True, subtree=True
            )
            self._document = self.root.owner_document
            self._document.add_settle_listener(self._on_settled)
            logger.info(
                "Initial %s scan tracked %d matches", self.descriptor.name, len(self._known)
            )
        return self

    def stop(self) -> None:
        """Stop watching; emit REMOVED for every tracked match, then end.

        Calling ``stop`` again does nothing.
        """
        if self._state is WatcherState.STOPPED:
            return
        self._state = WatcherState.STOPPED
        if self._observer is not None:
            self._observer.disconnect()
            self._observer = None
        if self._document is not None:
            self._document.remove_settle_listener(self._on_settled)
            self._document = None
        self._backlog = []
        # Held additions were never announced, so they get no REMOVED.
        self._held = {}

        with entity_scope(self.descriptor.name):
            tracked = list(self._known.values())
            self._known.clear()
            for item in tracked:
                self._emit(WatchEvent(kind=EventKind.REMOVED, match=item.match))

            subscriptions = self._subscriptions
            self._subscriptions = []
            for subscription in subscriptions:
                subscription.active = False
                self._safe_call(subscription.on_end, "end callback")
            logger.info(
                "Stopped %s watcher after %d batches (%d matches flushed)",
                self.descriptor.name,
                self._batch_index,
                len(tracked),
            )

    def flush_pending_removals(self) -> None:
        """Report pending detachments now instead of after the grace period,
        then release any held additions."""
        self._settle(force=True)

    def _on_settled(self) -> None:
        self._settle(force=False)
        self._delivery_index += 1

    def _settle(self, force: bool) -> None:
        if self._state is not WatcherState.RUNNING:
            return
        with entity_scope(self.descriptor.name):
            removals = []
            for tracked in self._known.values():
                if tracked.pending_since is None:
                    continue
                if self._is_present(tracked.match.node):
                    tracked.pending_since = None
                    continue
                if force or self._delivery_index - tracked.pending_since >= self.removal_grace:
                    removals.append(WatchEvent(kind=EventKind.REMOVED, match=tracked.match))

            held = list(self._held.values())
            self._held = {}
            additions = [
                e for e in held
                if self._is_present(e.match.node) and not self._torn_down(e.match.node)
            ]
            if len(additions) < len(held):
                logger.debug(
                    "Dropped %d held %s additions that detached before settling",
                    len(held) - len(additions),
                    self.descriptor.name,
                )
            self._apply_and_emit(removals + additions)

    # -- batch processing ------------------------------------------------

    def _on_mutations(self, records: List[MutationRecord], observer: MutationObserver) -> None:
        self.process_records(records)

    def process_records(self, records: List[MutationRecord]) -> None:
        """Handle one batch of mutation records.

        Batches arriving while another is being handled (a subscriber that
        forced delivery) are processed right after it, in order. Pending
        detachments are settled by the document once its delivery runs dry;
        callers feeding records by hand settle with ``flush_pending_removals``.
        """
        if self._state is not WatcherState.RUNNING:
            return
        if self._processing:
            self._backlog.append(list(records))
            return

        self._processing = True
        try:
            batch: Optional[List[MutationRecord]] = list(records)
            while batch is not None and self._state is WatcherState.RUNNING:
                self._process_batch(batch)
                batch = self._backlog.pop(0) if self._backlog else None
        finally:
            self._processing = False

    def _process_batch(self, records: List[MutationRecord]) -> None:
        self._batch_index += 1
        with entity_scope(self.descriptor.name), batch_scope(self._batch_index):
            try:
                teardowns = self._mark_detachments()
                additions = self._collect_additions(
                    self._scan_contexts(records), set(id(e.match.node) for e in teardowns)
                )
            except Exception as e:
                self.reporter.record_error(
                    self.descriptor.name, e, f"batch {self._batch_index}"
                )
                return
            self._apply_and_emit(teardowns)
            # Additions wait behind pending detachments so that genuine
            # removals are announced first.
            if self._held or self.pending_removal_count:
                for event in additions:
                    self._held[id(event.match.node)] = event
            else:
                self._apply_and_emit(additions)

    def _mark_detachments(self) -> List[WatchEvent]:
        """Torn-down matches as REMOVED events; detached ones become pending."""
        events = []
        for tracked in self._known.values():
            node = tracked.match.node
            if self._torn_down(node):
                events.append(WatchEvent(kind=EventKind.REMOVED, match=tracked.match))
                continue
            if self._is_present(node):
                if tracked.pending_since is not None:
                    logger.debug("Tracked %s reattached; keeping it", self.descriptor.name)
                    tracked.pending_since = None
                continue
            if tracked.pending_since is None:
                tracked.pending_since = self._delivery_index
        return events

    def _scan_contexts(self, records: List[MutationRecord]) -> List[Node]:
        """Minimal subtrees worth rescanning for this batch."""
        contexts: List[Node] = []
        for record in records:
            if record.type == CHILD_LIST:
                for node in record.added_nodes:
                    if id(node) in self._known:
                        continue
                    contexts.append(self._context_for(node))
                if record.removed_nodes and id(record.target) not in self._known:
                    contexts.append(self._context_for(record.target, depth=0))
            elif record.type == ATTRIBUTES:
                if id(record.target) not in self._known:
                    contexts.append(self._context_for(record.target))

        present = [c for c in unique_by_identity(contexts) if self._is_present(c)]
        # A context nested inside another is covered by the outer scan.
        return [
            c for c in present
            if not any(other is not c and other.contains(c) for other in present)
        ]

    def _context_for(self, node: Node, depth: Optional[int] = None) -> Node:
        levels = self.descriptor.context_depth if depth is None else depth
        context = node
        for _ in range(levels):
            if context is self.root or context.parent is None:
                break
            context = context.parent
        return context

    def _collect_additions(self, contexts: List[Node], excluded: set) -> List[WatchEvent]:
        events = []
        seen = set(excluded)
        for context in contexts:
            for candidate in run_finder(self.descriptor, context):
                key = id(candidate)
                if key in seen or key in self._known or key in self._held:
                    continue
                seen.add(key)
                if not self._is_present(candidate) or self._torn_down(candidate):
                    continue
                record = run_parser(self.descriptor, candidate)
                self.reporter.record_parse(self.descriptor.name, record)
                if self.min_score is not None and record.score < self.min_score:
                    logger.debug(
                        "Rejected %s candidate with score %.2f < %.2f",
                        self.descriptor.name,
                        record.score,
                        self.min_score,
                    )
                    continue
                match = Match(node=candidate, record=record, first_seen=self._clock())
                events.append(WatchEvent(kind=EventKind.ADDED, match=match))
        return events

    def _apply_and_emit(self, events: List[WatchEvent]) -> None:
        # The known-set changes at emission time so that a stop() issued by a
        # subscriber mid-batch flushes exactly the matches already announced.
        for event in events:
            if self._state is not WatcherState.RUNNING:
                break
            key = id(event.match.node)
            tracked = self._known.get(key)
            if event.kind is EventKind.REMOVED:
                if tracked is None or tracked.match is not event.match:
                    continue
                del self._known[key]
            else:
                if tracked is not None:
                    continue
                self._known[key] = _Tracked(match=event.match)
            self._emit(event)

    def _emit(self, event: WatchEvent) -> None:
        self.reporter.record_event(self.descriptor.name, event)
        for subscription in list(self._subscriptions):
            if subscription.active:
                self._safe_call(subscription.on_event, "event callback", event)

    def _safe_call(self, fn: Optional[Callable], label: str, *args) -> None:
        if fn is None:
            return
        try:
            fn(*args)
        except Exception as e:
            self.reporter.record_error(self.descriptor.name, e, label)

    # -- predicates ------------------------------------------------------

    def _is_present(self, node: Node) -> bool:
        if not self.root.contains(node):
            return False
        return node.is_connected or not self._require_connection

    def _torn_down(self, node: Node) -> bool:
        check = self.descriptor.is_torn_down
        if check is None:
            return False
        try:
            return bool(check(node))
        except Exception as e:
            logger.warning(
                "Teardown check for %s failed: %s", self.descriptor.name, e
            )
            return False
