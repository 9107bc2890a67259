import pytest

from splice.splice_datatypes import (
    ParseError, Literal, Variable, Index, Call, MethodCall, BinOp, LogicalOp, UnaryOp,
    Paren, TableConstructor
)
from splice.splice_parser import parse_document, parse_expression
from splice.splice_tree import collect_nodes_of_type, find_node_of_type, render_to_text


# Test cases: (id, source, expected_ast)
EXPRESSION_CASES = [
    ("int", "42", Literal(42)),
    ("float", "1.5", Literal(1.5)),
    ("hex", "0x1F", Literal(31)),
    ("exponent", "1e3", Literal(1000.0)),
    ("nil", "nil", Literal(None)),
    ("true", "true", Literal(True)),
    ("double_quoted", '"a\\nb"', Literal("a\nb")),
    ("single_quoted", "'it\\'s'", Literal("it's")),
    ("name", "user", Variable("user")),
    ("keyword_prefix_name", "android", Variable("android")),
    ("precedence", "1 + 2 * 3",
     BinOp("+", Literal(1), BinOp("*", Literal(2), Literal(3)))),
    ("left_assoc", "8 - 4 - 2",
     BinOp("-", BinOp("-", Literal(8), Literal(4)), Literal(2))),
    ("power_right_assoc", "2 ^ 3 ^ 2",
     BinOp("^", Literal(2), BinOp("^", Literal(3), Literal(2)))),
    ("unary_binds_looser_than_power", "-2 ^ 2",
     UnaryOp("-", BinOp("^", Literal(2), Literal(2)))),
    ("concat_right_assoc", "a .. b .. c",
     BinOp("..", Variable("a"), BinOp("..", Variable("b"), Variable("c")))),
    ("not_binds_tighter_than_comparison", "not a == b",
     BinOp("==", UnaryOp("not", Variable("a")), Variable("b"))),
    ("logical", "a and b or c",
     LogicalOp("or", LogicalOp("and", Variable("a"), Variable("b")), Variable("c"))),
    ("floor_division", "7 // 2", BinOp("//", Literal(7), Literal(2))),
    ("length", "#t", UnaryOp("#", Variable("t"))),
    ("field", "a.b", Index(Variable("a"), Literal("b"))),
    ("index", "a[1]", Index(Variable("a"), Literal(1))),
    ("chain", "a.b[c].d",
     Index(Index(Index(Variable("a"), Literal("b")), Variable("c")), Literal("d"))),
    ("call", "f(1, x)", Call(Variable("f"), [Literal(1), Variable("x")])),
    ("call_no_args", "f()", Call(Variable("f"), [])),
    ("call_string", 'f "s"', Call(Variable("f"), [Literal("s")])),
    ("call_table", "f{1}", Call(Variable("f"), [TableConstructor([(None, Literal(1))])])),
    ("method", "s:upper()", MethodCall(Variable("s"), "upper", [])),
    ("method_args", "s:sub(1, 2)", MethodCall(Variable("s"), "sub", [Literal(1), Literal(2)])),
    ("field_call", "splice.baseUrl()",
     Call(Index(Variable("splice"), Literal("baseUrl")), [])),
    ("paren", "(f())", Paren(Call(Variable("f"), []))),
    ("empty_table", "{}", TableConstructor([])),
    ("table", "{1, x = 2, [3] = 4; }",
     TableConstructor([(None, Literal(1)), (Literal("x"), Literal(2)), (Literal(3), Literal(4))])),
    ("padded", "  1 + 1  ", BinOp("+", Literal(1), Literal(1))),
]


@pytest.mark.parametrize("source, expected", [(src, exp) for _, src, exp in EXPRESSION_CASES],
                         ids=[case_id for case_id, _, _ in EXPRESSION_CASES])
def test_parse_expression(source, expected):
    assert parse_expression(source) == expected


@pytest.mark.parametrize("source", ["1+", "(1", "1 2", "", "a.", "f(1,)", "'unterminated"])
def test_malformed_expressions_raise_parse_error(source):
    with pytest.raises(ParseError):
        parse_expression(source)


def test_parse_expression_rejects_non_strings():
    with pytest.raises(ParseError):
        parse_expression(42)


def test_expression_nodes_carry_locations():
    node = parse_expression("1 +\n  x")
    assert node.loc["line"] == 1
    assert node.right.loc["line"] == 2


# --- Documents ---

def child_types(tree):
    return [c.type for c in tree.children]


def test_document_splits_directives_from_text():
    tree = parse_document("Hello ${name}!")
    assert tree.type == "Document"
    assert child_types(tree) == ["Text", "Directive", "Text"]
    directive = tree.children[1]
    assert child_types(directive) == ["DirectiveMark", "DirectiveExpression", "DirectiveEnd"]
    assert find_node_of_type(directive, "DirectiveExpression").text == "name"


def test_directive_expression_keeps_braces_and_quoted_braces():
    tree = parse_document("${ {1, 2} } ${'}'}")
    expressions = [n.text for n in collect_nodes_of_type(tree, "DirectiveExpression")]
    assert expressions == [" {1, 2} ", "'}'"]


def test_escape_nodes():
    tree = parse_document("cost: \\$5")
    escape = find_node_of_type(tree, "Escape")
    assert escape.text == "\\$"


def test_wiki_link_with_embedded_directive():
    tree = parse_document("see [[${page}|alias]]")
    link = find_node_of_type(tree, "WikiLink")
    assert child_types(link) == ["WikiLinkMark", "WikiLinkPage", "WikiLinkAlias", "WikiLinkEnd"]
    assert find_node_of_type(link, "WikiLinkPage").text == "${page}"


def test_attribute_nodes():
    tree = parse_document("Task [status: done]")
    attribute = find_node_of_type(tree, "Attribute")
    assert find_node_of_type(attribute, "AttributeName").text == "status"
    assert find_node_of_type(attribute, "AttributeValue").text == "done"


def test_adjacent_text_runs_are_merged():
    tree = parse_document("a [b] c $ d \\q")
    assert child_types(tree) == ["Text"]


@pytest.mark.parametrize("source", [
    "",
    "plain text",
    "Hello ${name}!",
    "${unclosed",
    "${}",
    "$ and { and }",
    "[[Page]] and [[Other|alias]]",
    "[not an attribute]",
    "[x: ${y}]",
    "back\\slash \\$ \\[",
    "multi\nline\n${a}\n",
    "unicode: café ☃",
])
def test_render_of_parse_is_identity(source):
    assert render_to_text(parse_document(source)) == source


def test_parse_document_rejects_non_strings():
    with pytest.raises(ParseError):
        parse_document(None)
