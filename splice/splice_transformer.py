"""
Transforms raw koine ASTs into splice expression nodes and document parse trees.
"""
import re

from splice.splice_datatypes import (
    Literal, Variable, Index, Call, MethodCall, BinOp, LogicalOp, UnaryOp,
    Paren, TableConstructor
)
from splice.splice_tree import ParseTree

_STRING_ESCAPES = {
    'n': '\n', 't': '\t', 'r': '\r', 'a': '\a', 'b': '\b', 'f': '\f',
    'v': '\v', '0': '\0', '\\': '\\', '"': '"', "'": "'", '\n': '\n',
}
_ESCAPE_RE = re.compile(r'\\(.)', re.DOTALL)


def unescape_string(body: str) -> str:
    return _ESCAPE_RE.sub(lambda m: _STRING_ESCAPES.get(m.group(1), m.group(1)), body)


class ExpressionTransformer:
    def _attach_loc(self, obj, node):
        line = node.get('line'); col = node.get('col')
        if line is not None and col is not None:
            obj.loc = {'line': line, 'col': col, 'tag': node.get('tag'), 'text': node.get('text')}
        return obj

    def transform(self, node: object) -> object:
        if isinstance(node, list):
            return [self.transform(n) for n in node]
        if not isinstance(node, dict):
            return node

        tag = node.get('tag')
        children = node.get('children', [])

        match tag:
            case 'expression_root':
                return self.transform(children[0])
            case 'binary_op':
                op = node['op']['text']
                left = self.transform(node['left'])
                right = self.transform(node['right'])
                if op in ('and', 'or'):
                    return self._attach_loc(LogicalOp(op, left, right), node['op'])
                return self._attach_loc(BinOp(op, left, right), node['op'])
            case 'unary_op_expr':
                op, operand = children
                return self._attach_loc(UnaryOp(op['text'], self.transform(operand)), node)
            case 'postfix':
                return self._fold_postfix(children)
            case 'group':
                return self._attach_loc(Paren(self.transform(children[0])), node)
            case 'table':
                return self._attach_loc(TableConstructor([self._field(f) for f in children]), node)

            # Atomics
            case 'nil':
                return self._attach_loc(Literal(None), node)
            case 'boolean':
                return self._attach_loc(Literal(node['text'] == 'true'), node)
            case 'number':
                return self._attach_loc(Literal(self._number(node['text'])), node)
            case 'string':
                return self._attach_loc(Literal(unescape_string(node['text'][1:-1])), node)
            case 'name':
                return self._attach_loc(Variable(node['text']), node)

        raise ValueError(f"Unexpected expression node: {tag!r}")

    def _number(self, text: str):
        if text[:2] in ('0x', '0X'):
            return int(text, 16)
        if any(c in text for c in '.eE'):
            return float(text)
        return int(text)

    def _field(self, node: dict) -> tuple:
        children = node.get('children', [])
        match node.get('tag'):
            case 'keyed_field':
                return (self.transform(children[0]), self.transform(children[1]))
            case 'named_field':
                name_node = children[0]
                return (self._attach_loc(Literal(name_node['text']), name_node), self.transform(children[1]))
            case 'positional_field':
                return (None, self.transform(children[0]))
        raise ValueError(f"Unexpected table field: {node.get('tag')!r}")

    def _fold_postfix(self, children: list):
        obj = self.transform(children[0])
        for suffix in children[1:]:
            parts = suffix.get('children', [])
            match suffix.get('tag'):
                case 'field_suffix':
                    key = self._attach_loc(Literal(parts[0]['text']), parts[0])
                    obj = self._attach_loc(Index(obj, key), suffix)
                case 'index_suffix':
                    obj = self._attach_loc(Index(obj, self.transform(parts[0])), suffix)
                case 'call_suffix':
                    obj = self._attach_loc(Call(obj, self.transform(parts)), suffix)
                case 'method_suffix':
                    name_node, call = parts
                    args = self.transform(call.get('children', []))
                    obj = self._attach_loc(MethodCall(obj, name_node['text'], args), suffix)
                case other:
                    raise ValueError(f"Unexpected postfix suffix: {other!r}")
        return obj


class DocumentTransformer:
    """Turns the koine document AST into a ParseTree, merging adjacent Text runs."""

    def transform(self, node: dict) -> ParseTree:
        children = node.get('children')
        if children is None:
            return ParseTree(type=node.get('tag'), text=node.get('text', ''),
                             line=node.get('line'), col=node.get('col'))
        kids = [self.transform(c) for c in children]
        return ParseTree(type=node.get('tag'), children=self._merge_text(kids),
                         line=node.get('line'), col=node.get('col'))

    def _merge_text(self, kids: list) -> list:
        out = []
        for kid in kids:
            if out and kid.type == 'Text' and out[-1].type == 'Text':
                prev = out[-1]
                out[-1] = ParseTree(type='Text', text=prev.text + kid.text, line=prev.line, col=prev.col)
            else:
                out.append(kid)
        return out
