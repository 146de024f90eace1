"""
Configuration constants for structural detection.
"""

from core.watch_config import DEFAULT_REMOVAL_GRACE

# Ancestor levels above an added node that are rescanned for candidates.
DEFAULT_CONTEXT_DEPTH: int = 1

# Extra settled deliveries a detached match may stay pending before REMOVED.
# Re-exported so the engine and the config loader agree on one default.
REMOVAL_GRACE_DELIVERIES: int = DEFAULT_REMOVAL_GRACE

# Probe name recorded when an entity parser crashes outside its probes.
PARSER_FAILURE_PROBE: str = "<parser>"

# Parses scoring below this are logged by the detection reporter.
LOW_SCORE_LOG_THRESHOLD: float = 0.5

# Distinct probe failures a reporter logs; further ones are only counted.
MAX_DISTINCT_FAILURES_LOGGED: int = 200
