"""Item selection by mark expression, keyword expression and node ids."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import TypeVar

from vigil.config import NODEID_SEPARATOR, RunConfig
from vigil.domain.model import TestItem

from .expression import Expression

logger = logging.getLogger(__name__)

T = TypeVar("T")


def item_keywords(item: TestItem) -> set[str]:
    """Names a keyword expression can match for `item`.

    The item name (with parameter id), every component of its qualified
    name, the module file name and stem, the parameter id and the names of
    its marks.
    """
    keywords = {item.name, item.path.name, item.path.stem, *item.qualname.split(".")}
    if item.callspec is not None:
        keywords.add(item.callspec.id)
    keywords.update(item.mark_names)
    return keywords


def _mark_matcher(item: TestItem):
    names = item.mark_names
    return lambda name: name in names


def _keyword_matcher(item: TestItem):
    keywords = [kw.lower() for kw in item_keywords(item)]
    return lambda word: any(word.lower() in kw for kw in keywords)


@dataclass(frozen=True)
class NodeIdFilter:
    """Keeps only the items named by node-id roots.

    Items of a module for which a plain path root was also given are all
    kept; items of a module named only through node ids are kept when their
    node id equals or extends one of them.
    """

    nodeids: tuple[str, ...] = ()
    plain_roots: tuple[Path, ...] = field(default_factory=tuple)

    @classmethod
    def from_roots(cls, roots: Sequence[str], rootdir: Path) -> NodeIdFilter:
        """Split configured roots into plain paths and rootdir-relative node ids."""
        nodeids: list[str] = []
        plain: list[Path] = []
        for root in roots:
            path_part, sep, rest = root.partition(NODEID_SEPARATOR)
            path = Path(path_part).resolve()
            if not sep:
                plain.append(path)
                continue
            try:
                relative = path.relative_to(rootdir).as_posix()
            except ValueError:
                relative = path.as_posix()
            nodeids.append(f"{relative}{NODEID_SEPARATOR}{rest}")
        return cls(nodeids=tuple(nodeids), plain_roots=tuple(plain))

    def __bool__(self) -> bool:
        return bool(self.nodeids)

    def matches(self, item: TestItem) -> bool:
        """Return True if `item` is selected by the configured roots."""
        if not self.nodeids:
            return True
        if any(item.path == root or root in item.path.parents for root in self.plain_roots):
            return True
        return any(
            item.nodeid == nodeid
            or item.nodeid.startswith(nodeid + NODEID_SEPARATOR)
            or item.nodeid.startswith(nodeid + "[")
            for nodeid in self.nodeids
        )


class Selector:
    """Applies compiled selection expressions and node-id roots to items.

    Args:
        mark_expression: Compiled expression over mark names, or None.
        keyword_expression: Compiled expression over item keywords, or None.
        nodeid_filter: Restriction from node-id roots.
    """

    def __init__(
        self,
        mark_expression: Expression | None = None,
        keyword_expression: Expression | None = None,
        nodeid_filter: NodeIdFilter | None = None,
    ) -> None:
        self.mark_expression = mark_expression
        self.keyword_expression = keyword_expression
        self.nodeid_filter = nodeid_filter or NodeIdFilter()

    @classmethod
    def from_config(cls, config: RunConfig, rootdir: Path) -> Selector:
        """Compile the configured expressions.

        Raises:
            ParseError: If an expression is malformed.
        """
        return cls(
            mark_expression=(
                Expression.compile(config.mark_expression)
                if config.mark_expression
                else None
            ),
            keyword_expression=(
                Expression.compile(config.keyword_expression)
                if config.keyword_expression
                else None
            ),
            nodeid_filter=NodeIdFilter.from_roots(config.roots, rootdir),
        )

    def matches(self, item: TestItem) -> bool:
        """Return True if `item` passes every configured filter."""
        if not self.nodeid_filter.matches(item):
            return False
        if self.mark_expression and not self.mark_expression.evaluate(_mark_matcher(item)):
            return False
        if self.keyword_expression and not self.keyword_expression.evaluate(
            _keyword_matcher(item)
        ):
            return False
        return True

    def select(
        self,
        candidates: Iterable[T],
        key: Callable[[T], TestItem] | None = None,
    ) -> tuple[list[T], list[T]]:
        """Partition `candidates` into (selected, deselected), preserving order.

        `key` maps a candidate to the item it stands for; by default the
        candidates are items themselves.
        """
        selected: list[T] = []
        deselected: list[T] = []
        for candidate in candidates:
            item = key(candidate) if key is not None else candidate
            (selected if self.matches(item) else deselected).append(candidate)
        if deselected:
            logger.info("Deselected %d items", len(deselected))
        return selected, deselected
