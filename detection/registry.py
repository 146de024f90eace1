"""
Explicit, owned registry of entity types.

Construct one registry per host session and hand it to the code that starts
watchers; nothing about registered entities is kept in module globals.
"""

import logging
from typing import Dict, List, Optional, Tuple

from detection.config import REMOVAL_GRACE_DELIVERIES
from detection.finder import run_finder
from detection.models import EntityDescriptor, ParseRecord
from detection.parser import run_parser
from detection.reporting import DetectionReporter
from detection.watcher import Watcher
from markup.dom import Node

logger = logging.getLogger(__name__)


class EntityRegistry:
    """Named entity descriptors plus the reporter their watchers share."""

    def __init__(self, reporter: Optional[DetectionReporter] = None):
        self.reporter = reporter or DetectionReporter()
        self._descriptors: Dict[str, EntityDescriptor] = {}

    def register(self, descriptor: EntityDescriptor) -> EntityDescriptor:
        """Add an entity type.

        Raises:
            TypeError: If ``descriptor`` is not an EntityDescriptor.
            ValueError: If the name is already registered.
        """
        if not isinstance(descriptor, EntityDescriptor):
            raise TypeError(
                f"Expected EntityDescriptor, got {type(descriptor).__name__}"
            )
        if descriptor.name in self._descriptors:
            raise ValueError(f"Entity '{descriptor.name}' is already registered")
        self._descriptors[descriptor.name] = descriptor
        logger.debug("Registered entity type %s", descriptor.name)
        return descriptor

    def get(self, name: str) -> EntityDescriptor:
        """Look up a descriptor.

        Raises:
            KeyError: If no entity type has that name.
        """
        try:
            return self._descriptors[name]
        except KeyError:
            raise KeyError(
                f"Unknown entity type '{name}'. Registered: {sorted(self._descriptors)}"
            ) from None

    def names(self) -> List[str]:
        return sorted(self._descriptors)

    def __contains__(self, name: str) -> bool:
        return name in self._descriptors

    def __len__(self) -> int:
        return len(self._descriptors)

    def watch(
        self,
        name: str,
        root: Node,
        min_score: Optional[float] = None,
        removal_grace: int = REMOVAL_GRACE_DELIVERIES,
    ) -> Watcher:
        """Create an unstarted Watcher for ``name`` under ``root``.

        Subscribe (or open a stream) before calling ``start()`` to receive
        the initial scan's events.
        """
        return Watcher(
            root,
            self.get(name),
            min_score=min_score,
            removal_grace=removal_grace,
            reporter=self.reporter,
        )

    def find_and_parse(self, name: str, root: Node) -> List[Tuple[Node, ParseRecord]]:
        """One-shot detection: every candidate under ``root`` with its record."""
        descriptor = self.get(name)
        results = []
        for candidate in run_finder(descriptor, root):
            record = run_parser(descriptor, candidate)
            self.reporter.record_parse(name, record)
            results.append((candidate, record))
        return results
