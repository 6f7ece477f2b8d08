from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from graph import Graph, Node
from lexer import encode_string_literal
from registry import FIELD, STATEMENT, VALUE

logger = logging.getLogger(__name__)


class CodegenError(ValueError):
    """Raised when Python source generation fails."""


# Operator precedence, numbered like Blockly's Python generator: lower binds tighter.
ORDER_ATOMIC = 0
ORDER_COLLECTION = 1
ORDER_FUNCTION_CALL = 2
ORDER_EXPONENTIATION = 3
ORDER_UNARY_SIGN = 4
ORDER_MULTIPLICATIVE = 5
ORDER_ADDITIVE = 6
ORDER_RELATIONAL = 11
ORDER_LOGICAL_NOT = 12
ORDER_LOGICAL_AND = 13
ORDER_LOGICAL_OR = 14
ORDER_CONDITIONAL = 15
ORDER_NONE = 99

DEFAULT_INDENT = "    "


def generate_source(graph: Graph, indent: str = DEFAULT_INDENT) -> str:
    return SourceBuilder(graph, indent=indent).build()


def write_source(source: str, output_path: Path) -> None:
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(source, encoding="utf-8")


def needs_parentheses(child_order: int, order: int, strict: bool = False) -> bool:
    if child_order == ORDER_ATOMIC or order == ORDER_NONE:
        return False
    if child_order > order:
        return True
    return strict and child_order == order


class SourceBuilder:
    """Renders a block graph as Python source.

    Kind generators receive the node and this builder. Statement generators
    return text ending in a newline; expression generators return a
    (text, order) pair.
    """

    def __init__(self, graph: Graph, indent: str = DEFAULT_INDENT) -> None:
        self.graph = graph
        self.indent = indent

    def build(self) -> str:
        chunks: list[str] = []
        for root_id in self.graph.roots:
            node = self.graph.nodes[root_id]
            if self.graph.kind_of(node).is_expression:
                if node.disabled:
                    continue
                code, _ = self.expression_to_code(node)
                chunks.append(code + "\n")
                continue
            code = self.chain_to_code(root_id)
            if code:
                chunks.append(code)
        logger.debug("Generated %d chunk(s) from %d root(s)", len(chunks), len(self.graph.roots))
        return "\n".join(chunks)

    def block_to_code(self, node: Node) -> str:
        kind = self.graph.kind_of(node)
        if kind.generator is None:
            raise CodegenError(f"Block kind '{kind.tag}' has no generator.")
        if kind.is_expression:
            code, _ = self.expression_to_code(node)
            return code + "\n"
        code = kind.generator(node, self)
        if not isinstance(code, str):
            raise CodegenError(f"Statement generator for '{kind.tag}' returned {type(code).__name__}, expected str.")
        return code

    def expression_to_code(self, node: Node) -> tuple[str, int]:
        kind = self.graph.kind_of(node)
        if kind.generator is None:
            raise CodegenError(f"Block kind '{kind.tag}' has no generator.")
        result = kind.generator(node, self)
        if not (isinstance(result, tuple) and len(result) == 2 and isinstance(result[0], str) and isinstance(result[1], int)):
            raise CodegenError(f"Expression generator for '{kind.tag}' must return (code, order), got {result!r}.")
        return result

    def chain_to_code(self, first_id: str | None) -> str:
        parts: list[str] = []
        for node in self.graph.chain(first_id):
            if node.disabled:
                continue
            parts.append(self.block_to_code(node))
        return "".join(parts)

    def value_to_code(self, node: Node, slot: str, order: int = ORDER_NONE, strict: bool = False) -> str:
        child = self.graph.child(node, slot)
        if child is None or child.disabled:
            return self.placeholder(node, slot)
        code, child_order = self.expression_to_code(child)
        if needs_parentheses(child_order, order, strict):
            return f"({code})"
        return code

    def statement_to_code(self, node: Node, slot: str) -> str:
        """Body of a statement input, indented one level; `pass` when empty."""
        child = self.graph.child(node, slot)
        code = self.chain_to_code(child.id) if child is not None else ""
        if not code.strip():
            code = "pass\n"
        return self.indent_lines(code)

    def indent_lines(self, code: str) -> str:
        return "".join(self.indent + line if line.strip() else line for line in code.splitlines(keepends=True))

    def placeholder(self, node: Node, slot: str) -> str:
        declared = self.graph.kind_of(node).slot(slot, node.mutation)
        if declared is None:
            raise CodegenError(f"Block '{node.kind}' has no input '{slot}'.")
        return declared.placeholder or "None"

    def field(self, node: Node, name: str, default: Any = None) -> Any:
        value = node.fields.get(name)
        if value is None or value == "":
            declared = self.graph.kind_of(node).slot(name, node.mutation)
            if declared is not None and declared.default is not None:
                return declared.default
            return default
        return value

    def variable_name(self, node: Node, name: str = "VAR") -> str:
        return self.graph.variable_name(node.fields.get(name))

    def contains(self, node: Node, tags: set[str] | frozenset[str]) -> bool:
        return any(d.kind in tags and not d.disabled for d in self.graph.descendants(node.id))

    def variables_used(self, node: Node, slot: str) -> list[str]:
        """Variable names rendered under a slot, in source order.

        An empty variable input counts by its placeholder, since that name is
        what the generated text refers to.
        """
        names: list[str] = []
        child = self.graph.child(node, slot)
        self._collect_variables(child.id if child is not None else None, names)
        return names

    def _collect_variables(self, first_id: str | None, names: list[str]) -> None:
        for current in self.graph.chain(first_id):
            if current.disabled:
                continue
            for declared in self.graph.kind_of(current).slots_for(current.mutation):
                name = None
                if declared.kind == FIELD and declared.variable:
                    name = self.graph.variable_name(current.fields.get(declared.name))
                elif declared.kind == VALUE:
                    child = self.graph.child(current, declared.name)
                    if child is not None and not child.disabled:
                        self._collect_variables(child.id, names)
                    elif declared.check and "Variable" in declared.check:
                        name = declared.placeholder
                elif declared.kind == STATEMENT:
                    self._collect_variables(current.inputs.get(declared.name), names)
                if name and name not in names:
                    names.append(name)

    def fmt(self, value: Any) -> str:
        if isinstance(value, bool):
            return "True" if value else "False"
        if isinstance(value, (int, float)):
            if float(value).is_integer():
                return str(int(value))
            return f"{value:.6f}".rstrip("0").rstrip(".")
        return str(value)

    def string(self, value: Any) -> str:
        return encode_string_literal("" if value is None else str(value))
