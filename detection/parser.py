"""
Parser protocol helpers.

An entity parser is a plain function ``parse(candidate) -> ParseRecord`` that
runs its probes through an ErrorCollector and finishes with ``build_record``.
"""

import logging
from typing import Any, Dict, Optional

from detection.config import PARSER_FAILURE_PROBE
from detection.error_collector import ErrorCollector, ProbeError
from detection.models import EntityDescriptor, ParseRecord
from markup.dom import Node

logger = logging.getLogger(__name__)


def build_record(
    collector: ErrorCollector,
    elements: Dict[str, Optional[Node]],
    attributes: Dict[str, Any],
) -> ParseRecord:
    """Assemble a ParseRecord from a finished collector.

    Derived attributes are computed by the caller after the probes ran and
    have no effect on the score.
    """
    return ParseRecord(
        elements=dict(elements),
        attributes=dict(attributes),
        score=collector.score(),
        errors=collector.get_error_logs(),
        probe_count=collector.run_count(),
    )


def failed_record(message: str) -> ParseRecord:
    """Record for a candidate whose parser crashed outright: score 0."""
    return ParseRecord(
        elements={},
        attributes={},
        score=0.0,
        errors=[ProbeError(probe_name=PARSER_FAILURE_PROBE, message=message)],
        probe_count=1,
    )


def run_parser(descriptor: EntityDescriptor, candidate: Node) -> ParseRecord:
    """Parse ``candidate`` with the entity parser; never raises."""
    try:
        record = descriptor.parse(candidate)
    except Exception as e:
        logger.warning(
            "Parser for '%s' crashed on %r: %s", descriptor.name, candidate, e,
            exc_info=True,
        )
        return failed_record(str(e) or type(e).__name__)

    if not isinstance(record, ParseRecord):
        logger.warning(
            "Parser for '%s' returned %s instead of ParseRecord",
            descriptor.name,
            type(record).__name__,
        )
        return failed_record(
            f"parser returned {type(record).__name__}, expected ParseRecord"
        )
    return record
