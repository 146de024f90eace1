"""
Finder protocol helpers.

An entity finder is a plain function ``find(root) -> list[Node]``. The helpers
here run finders without letting failures escape and implement the common
policies for nested candidates.
"""

import logging
from typing import Callable, Iterable, List, Optional

from detection.models import EntityDescriptor
from markup.dom import Element, Node

logger = logging.getLogger(__name__)


def unique_by_identity(nodes: Iterable[Node]) -> List[Node]:
    """Drop repeated nodes (by ``is``), keeping first occurrence order."""
    seen = set()
    result = []
    for node in nodes:
        key = id(node)
        if key in seen:
            continue
        seen.add(key)
        result.append(node)
    return result


def keep_outermost(
    candidates: Iterable[Node],
    is_candidate: Callable[[Element], bool],
) -> List[Node]:
    """Keep candidates that have no ancestor satisfying ``is_candidate``.

    The check looks at real ancestors rather than at the other results, so
    the outcome does not depend on how narrowly the search was scoped.
    """
    result = []
    for node in candidates:
        parent = node.parent
        nested = False
        while parent is not None:
            if isinstance(parent, Element) and is_candidate(parent):
                nested = True
                break
            parent = parent.parent
        if not nested:
            result.append(node)
    return result


def keep_innermost(
    candidates: Iterable[Node],
    is_candidate: Callable[[Element], bool],
) -> List[Node]:
    """Keep candidates that have no descendant satisfying ``is_candidate``."""
    result = []
    for node in candidates:
        nested = any(
            isinstance(d, Element) and is_candidate(d)
            for d in node.iter_subtree()
            if d is not node
        )
        if not nested:
            result.append(node)
    return result


def run_finder(descriptor: EntityDescriptor, root: Optional[Node]) -> List[Node]:
    """Run an entity finder, turning every failure into an empty result.

    Passing the ``Document`` searches the whole tree, which is how callers
    ask for "no particular root". ``None`` means there is nothing to search
    (a watcher whose root went away) and yields no candidates.

    Returns:
        Candidates in the order the finder produced them, de-duplicated by
        identity. Non-node results are discarded.
    """
    if root is None:
        return []
    try:
        raw = descriptor.find(root)
        if raw is None:
            return []
        candidates = [c for c in raw if isinstance(c, Node)]
    except Exception as e:
        logger.warning(
            "Finder for '%s' failed under %r: %s", descriptor.name, root, e,
            exc_info=True,
        )
        return []
    return unique_by_identity(candidates)
