"""
Parsed document trees and the find/traverse/replace utilities that work on them.

Visitors return one of:
  - ``Replace(tree)``            splice ``tree`` in place of the node (``None`` removes it);
                                 the replacement is not visited
  - ``VisitAction.STOP_DESCENT`` keep the node, skip its children
  - ``VisitAction.CONTINUE``     keep the node, visit its children (``None`` means the same)
"""
import asyncio
import inspect
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional, Union


@dataclass
class ParseTree:
    """A typed tree node. Leaves carry ``text``; branches carry ``children``."""
    type: Optional[str] = None
    children: Optional[List['ParseTree']] = None
    text: Optional[str] = None
    # 1-based position of the node in the parsed source, when known
    line: Optional[int] = field(default=None, compare=False)
    col: Optional[int] = field(default=None, compare=False)

    def is_leaf(self) -> bool:
        return self.children is None


class VisitAction(Enum):
    CONTINUE = "continue"
    STOP_DESCENT = "stop-descent"


@dataclass
class Replace:
    tree: Optional[ParseTree]


VisitResult = Union[Replace, VisitAction, None]
Visitor = Callable[[ParseTree], VisitResult]
AsyncVisitor = Callable[[ParseTree], Union[VisitResult, Awaitable[VisitResult]]]


def render_to_text(tree: Optional[ParseTree]) -> str:
    if tree is None:
        return ""
    if tree.text is not None:
        return tree.text
    return "".join(render_to_text(c) for c in tree.children or [])


def find_node_matching(tree: ParseTree, predicate: Callable[[ParseTree], bool]) -> Optional[ParseTree]:
    """First node in pre-order (the root included) that satisfies ``predicate``."""
    if predicate(tree):
        return tree
    for child in tree.children or []:
        found = find_node_matching(child, predicate)
        if found is not None:
            return found
    return None


def find_node_of_type(tree: ParseTree, node_type: str) -> Optional[ParseTree]:
    return find_node_matching(tree, lambda n: n.type == node_type)


def collect_nodes_of_type(tree: ParseTree, node_type: str) -> List[ParseTree]:
    out: List[ParseTree] = []

    def visit(n: ParseTree):
        if n.type == node_type:
            out.append(n)
        return VisitAction.CONTINUE

    traverse_tree(tree, visit)
    return out


def _check_result(result: Any) -> VisitResult:
    if result is None or isinstance(result, (Replace, VisitAction)):
        return result
    raise TypeError(f"Visitor must return Replace, VisitAction or None, not {type(result).__name__}")


def traverse_tree(tree: ParseTree, visitor: Visitor):
    """Pre-order walk; replacements are not allowed here."""
    result = _check_result(visitor(tree))
    if isinstance(result, Replace):
        raise TypeError("traverse_tree visitors cannot replace nodes; use replace_nodes_matching")
    if result is VisitAction.STOP_DESCENT:
        return
    for child in tree.children or []:
        traverse_tree(child, visitor)


async def traverse_tree_async(tree: ParseTree, visitor: AsyncVisitor):
    result = visitor(tree)
    if inspect.isawaitable(result):
        result = await result
    result = _check_result(result)
    if isinstance(result, Replace):
        raise TypeError("traverse_tree_async visitors cannot replace nodes; use replace_nodes_matching_async")
    if result is VisitAction.STOP_DESCENT:
        return
    for child in tree.children or []:
        await traverse_tree_async(child, visitor)


def replace_nodes_matching(tree: ParseTree, visitor: Visitor) -> Optional[ParseTree]:
    """Replaces nodes in place; returns the (possibly replaced) root."""
    result = _check_result(visitor(tree))
    if isinstance(result, Replace):
        return result.tree
    if result is not VisitAction.STOP_DESCENT and tree.children:
        new_children = []
        for child in tree.children:
            replacement = replace_nodes_matching(child, visitor)
            if replacement is not None:
                new_children.append(replacement)
        tree.children = new_children
    return tree


async def replace_nodes_matching_async(tree: ParseTree, visitor: AsyncVisitor, *,
                                       concurrent: bool = False) -> Optional[ParseTree]:
    """Async ``replace_nodes_matching``.

    With ``concurrent=True`` sibling subtrees are visited together; the
    children are reassembled in document order either way.
    """
    result = visitor(tree)
    if inspect.isawaitable(result):
        result = await result
    result = _check_result(result)
    if isinstance(result, Replace):
        return result.tree
    if result is not VisitAction.STOP_DESCENT and tree.children:
        if concurrent:
            replaced = await _gather_or_cancel(
                replace_nodes_matching_async(c, visitor, concurrent=True) for c in tree.children
            )
        else:
            replaced = []
            for child in tree.children:
                replaced.append(await replace_nodes_matching_async(child, visitor))
        tree.children = [c for c in replaced if c is not None]
    return tree


async def _gather_or_cancel(coros) -> list:
    """Like ``asyncio.gather``, but the first failure cancels and awaits the rest."""
    tasks = [asyncio.ensure_future(c) for c in coros]
    try:
        return await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise
