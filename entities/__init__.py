"""
Concrete entity types.

Each module supplies one finder/parser pair wrapped in an EntityDescriptor;
``build_default_registry`` registers them all on a fresh, owned registry.
"""

import dataclasses
import logging
from typing import Optional

from core.watch_config import WatchConfig
from detection.registry import EntityRegistry
from detection.reporting import DetectionReporter
from entities import attachment_overlay, message

logger = logging.getLogger(__name__)

DEFAULT_DESCRIPTORS = (
    message.DESCRIPTOR,
    attachment_overlay.DESCRIPTOR,
)


def build_default_registry(
    config: Optional[WatchConfig] = None,
    reporter: Optional[DetectionReporter] = None,
) -> EntityRegistry:
    """Create a registry holding every built-in entity type.

    Entities disabled in ``config`` are skipped; configured context depths
    replace the built-in ones.
    """
    registry = EntityRegistry(reporter=reporter)
    for descriptor in DEFAULT_DESCRIPTORS:
        if config is not None:
            entity_config = config.for_entity(descriptor.name)
            if not entity_config.enabled:
                logger.info("Entity type %s disabled by config", descriptor.name)
                continue
            if entity_config.context_depth is not None:
                descriptor = dataclasses.replace(
                    descriptor, context_depth=entity_config.context_depth
                )
        registry.register(descriptor)
    return registry


__all__ = [
    "DEFAULT_DESCRIPTORS",
    "attachment_overlay",
    "build_default_registry",
    "message",
]
