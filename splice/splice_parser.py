"""
Expression and document parsing on top of the koine grammars in ``splice/grammar``.
"""
import logging
from pathlib import Path
from typing import Optional

from koine import Parser

from splice.splice_datatypes import Node, ParseError
from splice.splice_transformer import DocumentTransformer, ExpressionTransformer
from splice.splice_tree import ParseTree

logger = logging.getLogger(__name__)

GRAMMAR_DIR = Path(__file__).parent / "grammar"


class _GrammarParser:
    """Loads one koine grammar lazily and turns koine results into values or ParseError."""

    def __init__(self, grammar_file: str, transformer):
        self.grammar_file = grammar_file
        self.transformer = transformer
        self._parser: Optional[Parser] = None

    @property
    def parser(self) -> Parser:
        # Grammar compilation is expensive; do it once per process
        if self._parser is None:
            self._parser = Parser.from_file(str(GRAMMAR_DIR / self.grammar_file))
        return self._parser

    def parse(self, text: str):
        try:
            parse_out = self.parser.parse(text)
        except Exception as e:
            raise ParseError(f"ParseError: parse failed: {e}", text) from e
        if parse_out.get('status') != 'success':
            raise ParseError(parse_out.get('message') or str(parse_out), text)
        ast_node = parse_out.get('ast')
        if ast_node is None:
            raise ParseError("Parse error: missing AST in parser result", text)
        try:
            return self.transformer.transform(ast_node)
        except Exception as e:
            raise ParseError(f"ParseError: transform failed: {e}", text) from e


_expression_parser = _GrammarParser("expression.yaml", ExpressionTransformer())
_document_parser = _GrammarParser("document.yaml", DocumentTransformer())


def parse_expression(text: str) -> Node:
    """Parses one expression; raises ParseError on malformed input."""
    if not isinstance(text, str):
        raise ParseError(f"expression must be a string, not {type(text).__name__}")
    logger.debug("Parsing expression %r", text)
    return _expression_parser.parse(text)


def parse_document(text: str) -> ParseTree:
    """Parses template text into a ``Document`` tree."""
    if not isinstance(text, str):
        raise ParseError(f"template must be a string, not {type(text).__name__}")
    return _document_parser.parse(text)
