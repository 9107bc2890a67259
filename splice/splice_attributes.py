"""
Inline ``[name: value]`` attributes: extraction into a dict and removal from a tree.
"""
import datetime
import logging
from typing import Any, Dict, Union

import yaml

from splice.splice_parser import parse_document
from splice.splice_tree import (
    ParseTree, Replace, VisitAction, find_node_of_type, render_to_text,
    replace_nodes_matching, traverse_tree
)

logger = logging.getLogger(__name__)


def clean_value(value: Any) -> Any:
    """Makes a YAML value JSON-friendly: dates become ISO strings."""
    if isinstance(value, (datetime.date, datetime.datetime)):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: clean_value(v) for k, v in value.items()}
    if isinstance(value, list):
        return [clean_value(v) for v in value]
    return value


def extract_attributes(tree: Union[ParseTree, str]) -> Dict[str, Any]:
    """Maps attribute names to their YAML-parsed values.

    A value that is not valid YAML is logged and left out; extraction goes on.
    """
    if isinstance(tree, str):
        tree = parse_document(tree)
    attributes: Dict[str, Any] = {}

    def visit(node: ParseTree):
        if node.type != 'Attribute':
            return VisitAction.CONTINUE
        name_node = find_node_of_type(node, 'AttributeName')
        value_node = find_node_of_type(node, 'AttributeValue')
        if name_node is not None and value_node is not None:
            name = render_to_text(name_node)
            raw = render_to_text(value_node)
            try:
                attributes[name] = clean_value(yaml.safe_load(raw))
            except yaml.YAMLError as e:
                logger.error("Error parsing attribute value as YAML %r: %s", raw, e)
        return VisitAction.STOP_DESCENT

    traverse_tree(tree, visit)
    return attributes


def clean_attributes(tree: ParseTree) -> ParseTree:
    """Removes every Attribute node from ``tree`` in place."""
    return replace_nodes_matching(
        tree, lambda n: Replace(None) if n.type == 'Attribute' else None
    )
