"""
Structural query helpers for entity heuristics.

Finders combine small attribute predicates with relative traversal rather than
a selector language. Every helper tolerates detached or partially built
subtrees and returns results in document order.
"""

import re
from typing import Callable, Iterator, List, Optional, Pattern, Union

from markup.dom import Element, Node

Predicate = Callable[[Element], bool]


class QueryError(LookupError):
    """Raised by ``query_one`` when the match count is not exactly one."""


def tag_is(*tags: str) -> Predicate:
    wanted = {t.lower() for t in tags}
    return lambda el: el.tag in wanted


def has_attr(name: str) -> Predicate:
    return lambda el: el.has_attribute(name)


def attr_equals(name: str, value: str) -> Predicate:
    return lambda el: el.get_attribute(name) == value


def attr_endswith(name: str, suffix: str) -> Predicate:
    def _check(el: Element) -> bool:
        value = el.get_attribute(name)
        return value is not None and value.endswith(suffix)

    return _check


def attr_startswith(name: str, prefix: str) -> Predicate:
    def _check(el: Element) -> bool:
        value = el.get_attribute(name)
        return value is not None and value.startswith(prefix)

    return _check


def attr_matches(name: str, pattern: Union[str, Pattern]) -> Predicate:
    regex = re.compile(pattern) if isinstance(pattern, str) else pattern

    def _check(el: Element) -> bool:
        value = el.get_attribute(name)
        return value is not None and regex.search(value) is not None

    return _check


def is_first_child(el: Element) -> bool:
    """True when ``el`` is the first element child of its parent."""
    if el.parent is None:
        return False
    siblings = el.parent.element_children
    return bool(siblings) and siblings[0] is el


def is_not_empty(el: Element) -> bool:
    """True when ``el`` has any child node (CSS ``:not(:empty)``)."""
    return bool(el.children)


def all_of(*predicates: Predicate) -> Predicate:
    return lambda el: all(p(el) for p in predicates)


def any_of(*predicates: Predicate) -> Predicate:
    return lambda el: any(p(el) for p in predicates)


def iter_elements(root: Optional[Node], include_self: bool = True) -> Iterator[Element]:
    """Yield elements under ``root`` in document order."""
    if root is None:
        return
    for node in root.iter_subtree():
        if not include_self and node is root:
            continue
        if isinstance(node, Element):
            yield node


def query_all(
    root: Optional[Node], predicate: Predicate, include_self: bool = False
) -> List[Element]:
    """All descendants of ``root`` matching ``predicate``."""
    return [el for el in iter_elements(root, include_self) if predicate(el)]


def first_match(
    root: Optional[Node], predicate: Predicate, include_self: bool = False
) -> Optional[Element]:
    for el in iter_elements(root, include_self):
        if predicate(el):
            return el
    return None


def query_one(root: Optional[Node], predicate: Predicate) -> Element:
    """The single descendant matching ``predicate``.

    Raises:
        QueryError: If zero or several descendants match.
    """
    matches = query_all(root, predicate)
    if len(matches) != 1:
        raise QueryError(f"Expected exactly one match, found {len(matches)}")
    return matches[0]


def ancestors(node: Optional[Node]) -> Iterator[Element]:
    """Yield element ancestors of ``node``, nearest first."""
    current = node.parent if node is not None else None
    while current is not None:
        if isinstance(current, Element):
            yield current
        current = current.parent


def closest(node: Optional[Node], predicate: Predicate) -> Optional[Element]:
    """Nearest inclusive element ancestor matching ``predicate``."""
    if isinstance(node, Element) and predicate(node):
        return node
    for el in ancestors(node):
        if predicate(el):
            return el
    return None


def following_siblings(node: Optional[Node]) -> Iterator[Element]:
    """Yield element siblings after ``node`` (CSS ``~`` combinator)."""
    current = node.next_sibling if node is not None else None
    while current is not None:
        if isinstance(current, Element):
            yield current
        current = current.next_sibling


def preceding_siblings(node: Optional[Node]) -> Iterator[Element]:
    """Yield element siblings before ``node``, nearest first."""
    current = node.previous_sibling if node is not None else None
    while current is not None:
        if isinstance(current, Element):
            yield current
        current = current.previous_sibling
