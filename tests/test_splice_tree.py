import asyncio

import pytest

from splice.splice_tree import (
    ParseTree, Replace, VisitAction, render_to_text, find_node_of_type, find_node_matching,
    collect_nodes_of_type, traverse_tree, traverse_tree_async,
    replace_nodes_matching, replace_nodes_matching_async
)


def leaf(type_, text):
    return ParseTree(type=type_, text=text)


@pytest.fixture
def tree():
    return ParseTree(type="Document", children=[
        leaf("Text", "Hello "),
        ParseTree(type="Directive", children=[
            leaf("DirectiveMark", "${"),
            leaf("DirectiveExpression", "name"),
            leaf("DirectiveEnd", "}"),
        ]),
        leaf("Text", "!"),
    ])


def test_render_to_text_concatenates_leaves(tree):
    assert render_to_text(tree) == "Hello ${name}!"
    assert render_to_text(None) == ""
    assert render_to_text(ParseTree(type="Document", children=[])) == ""


def test_find_node_of_type_is_preorder_and_includes_root(tree):
    assert find_node_of_type(tree, "Document") is tree
    assert find_node_of_type(tree, "DirectiveExpression").text == "name"
    assert find_node_of_type(tree, "Text").text == "Hello "
    assert find_node_of_type(tree, "WikiLink") is None


def test_find_node_matching_uses_predicate(tree):
    found = find_node_matching(tree, lambda n: n.text == "}")
    assert found.type == "DirectiveEnd"


def test_collect_nodes_of_type(tree):
    assert [n.text for n in collect_nodes_of_type(tree, "Text")] == ["Hello ", "!"]


def test_traverse_tree_stop_descent_skips_children(tree):
    seen = []

    def visit(n):
        seen.append(n.type)
        if n.type == "Directive":
            return VisitAction.STOP_DESCENT
        return VisitAction.CONTINUE

    traverse_tree(tree, visit)
    assert seen == ["Document", "Text", "Directive", "Text"]


def test_traverse_tree_rejects_replacements(tree):
    with pytest.raises(TypeError):
        traverse_tree(tree, lambda n: Replace(None))


def test_visitor_with_wrong_return_type_is_an_error(tree):
    with pytest.raises(TypeError):
        traverse_tree(tree, lambda n: True)


def test_replace_nodes_matching_replaces_and_removes(tree):
    def visit(n):
        if n.type == "Directive":
            return Replace(leaf("Text", "World"))
        if n.text == "!":
            return Replace(None)
        return None

    root = replace_nodes_matching(tree, visit)
    assert root is tree
    assert render_to_text(tree) == "Hello World"
    assert [c.type for c in tree.children] == ["Text", "Text"]


def test_replacement_content_is_not_revisited():
    tree = ParseTree(type="Document", children=[leaf("Text", "a")])
    calls = []

    def visit(n):
        calls.append(n.type)
        if n.type == "Text":
            # A replacement that would match again if it were visited
            return Replace(ParseTree(type="Text", children=[leaf("Text", "b")]))
        return None

    replace_nodes_matching(tree, visit)
    assert calls == ["Document", "Text"]
    assert render_to_text(tree) == "b"


def test_replacing_the_root_returns_the_replacement(tree):
    new_root = replace_nodes_matching(tree, lambda n: Replace(leaf("Text", "x")))
    assert render_to_text(new_root) == "x"


@pytest.mark.asyncio
async def test_traverse_tree_async_accepts_sync_and_async_visitors(tree):
    seen = []

    async def visit(n):
        seen.append(n.type)

    await traverse_tree_async(tree, visit)
    assert seen[0] == "Document"
    assert len(seen) == 7

    seen.clear()
    await traverse_tree_async(tree, lambda n: seen.append(n.type))
    assert len(seen) == 7


@pytest.mark.asyncio
@pytest.mark.parametrize("concurrent", [False, True])
async def test_replace_nodes_matching_async_keeps_document_order(concurrent):
    tree = ParseTree(type="Document", children=[
        leaf("Slow", "1"), leaf("Text", " and "), leaf("Fast", "2"),
    ])
    finished = []

    async def visit(n):
        if n.type == "Slow":
            await asyncio.sleep(0.05)
            finished.append("slow")
            return Replace(leaf("Text", "one"))
        if n.type == "Fast":
            finished.append("fast")
            return Replace(leaf("Text", "two"))
        return None

    root = await replace_nodes_matching_async(tree, visit, concurrent=concurrent)
    assert render_to_text(root) == "one and two"
    if concurrent:
        assert finished == ["fast", "slow"]
    else:
        assert finished == ["slow", "fast"]
