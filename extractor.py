from __future__ import annotations

import logging
import re
from typing import NamedTuple

from graph import NEXT, Graph, Node, SlotRef
from lexer import SourceLine, logical_lines, strip_parens
from registry import BlockKind, BlockRegistry, ParameterSet, Slot, default_parameters

logger = logging.getLogger(__name__)

# Lines that carry no block of their own.
NO_OP = re.compile(r"pass|global\s+[A-Za-z_]\w*(?:\s*,\s*[A-Za-z_]\w*)*")


class UnrecognizedFragmentError(ValueError):
    """Raised when a fragment of source matches no block pattern."""

    def __init__(self, text: str, line: int, reason: str = "no block pattern matches") -> None:
        summary = text.splitlines()[0] if text else ""
        super().__init__(f"Unrecognized fragment {summary!r} (line {line}): {reason}")
        self.text = text
        self.line = line
        self.reason = reason


class Extraction(NamedTuple):
    graph: Graph
    unrecognized: list[UnrecognizedFragmentError]


class Extractor:
    """Rebuilds a block graph from Python source.

    Each logical line is offered to the registered block patterns in
    specificity order. A line no pattern accepts is reported together with
    the indented block it owns; extraction carries on with the next line at
    the same or a lower indentation.
    """

    def __init__(self, registry: BlockRegistry, keep_unrecognized: bool = False, strict: bool = False) -> None:
        self.registry = registry
        self.keep_unrecognized = keep_unrecognized
        self.strict = strict
        self._graph: Graph | None = None
        self._errors: list[UnrecognizedFragmentError] = []

    def extract(self, text: str, graph: Graph | None = None) -> Extraction:
        target = graph if graph is not None else Graph(self.registry)
        self._graph = target
        self._errors = []
        try:
            with target.transaction():
                lines = logical_lines(text)
                if lines:
                    self._extract_top_level(lines)
            errors = self._errors
        finally:
            self._graph = None
            self._errors = []
        logger.info("Extracted %d block(s), %d unrecognized fragment(s)", len(target), len(errors))
        return Extraction(target, errors)

    # -- statements --------------------------------------------------------

    def _extract_top_level(self, lines: list[SourceLine]) -> None:
        base = lines[0].indent
        tail: Node | None = None
        index = 0
        while index < len(lines):
            line = lines[index]
            if line.indent != base:
                end = self._block_end(lines, index)
                node = self._unrecognized(lines, index, end, "unexpected indentation")
                index = end
            else:
                node, index = self._extract_statement(lines, index, top_level=True)
            if node is None:
                continue
            kind = self._graph.kind_of(node)
            if tail is not None and kind.previous and not line.blank_before:
                self._graph.attach(node.id, SlotRef(tail.id, NEXT))
            tail = node if kind.next else None

    def _extract_body(self, owner: Node, slot: str, lines: list[SourceLine]) -> None:
        base = lines[0].indent
        previous: Node | None = None
        index = 0
        while index < len(lines):
            if lines[index].indent != base:
                end = self._block_end(lines, index)
                node = self._unrecognized(lines, index, end, "unexpected indentation")
                index = end
            else:
                node, index = self._extract_statement(lines, index, top_level=False)
            if node is None:
                continue
            target = SlotRef(owner.id, slot) if previous is None else SlotRef(previous.id, NEXT)
            self._graph.attach(node.id, target)
            previous = node

    def _extract_statement(self, lines: list[SourceLine], index: int, top_level: bool) -> tuple[Node | None, int]:
        line = lines[index]
        end = self._block_end(lines, index)
        has_block = end > index + 1
        if not has_block and NO_OP.fullmatch(line.text.strip()):
            return None, end
        for kind in self.registry.statement_kinds(top_level=top_level):
            if has_block and kind.body is None:
                continue
            captures = kind.pattern.match(line.text)
            if captures is None:
                continue
            params = kind.extract(captures)
            if params is None:
                continue
            logger.debug("Line %d recognized as %s", line.line, kind.tag)
            return self._build_statement(kind, params, lines, index, end)
        if top_level and not has_block:
            node = self._extract_expression(line.text, line.line, report=False)
            if node is not None:
                return node, end
        reason = "simple statement cannot own an indented block" if has_block and self._matches_simple(line) else "no block pattern matches"
        return self._unrecognized(lines, index, end, reason), end

    def _matches_simple(self, line: SourceLine) -> bool:
        return any(kind.body is None and kind.pattern.match(line.text) is not None for kind in self.registry.statement_kinds(True))

    def _build_statement(
        self, kind: BlockKind, params: ParameterSet, lines: list[SourceLine], index: int, end: int
    ) -> tuple[Node, int]:
        header = lines[index]
        bodies: list[tuple[str, list[SourceLine]]] = []
        if kind.body is not None:
            block = lines[index + 1 : end]
            if kind.tail is not None and block and block[-1].indent == block[0].indent:
                captures = kind.tail.match(block[-1].text)
                lifted = default_parameters(kind.slots, captures) if captures is not None else None
                if lifted is not None:
                    params.fields.update(lifted.fields)
                    params.values.update(lifted.values)
                    block = block[:-1]
            bodies.append((kind.body, block))
            end = self._extract_clauses(kind, params, lines, end, header.indent, bodies)
        if kind.trailer is not None and end < len(lines) and lines[end].indent == header.indent:
            if self._registers(kind, params, lines[end]):
                end += 1

        node = kind.construct(self._graph, params)
        for name, text in params.values.items():
            self._attach_value(node, name, text, header.line)
        for slot, body in bodies:
            if body:
                self._extract_body(node, slot, body)
        return node, end

    @staticmethod
    def _registers(kind: BlockKind, params: ParameterSet, line: SourceLine) -> bool:
        """Whether a registration line binds exactly the handler just read."""
        captures = kind.trailer.match(line.text)
        if captures is None:
            return False
        for name, value in captures.items():
            if name == "HANDLER":
                if kind.procedure_name is not None and value != kind.procedure_name(params.fields):
                    return False
            elif str(params.fields.get(name)) != value:
                return False
        return True

    def _extract_clauses(
        self,
        kind: BlockKind,
        params: ParameterSet,
        lines: list[SourceLine],
        cursor: int,
        indent: int,
        bodies: list[tuple[str, list[SourceLine]]],
    ) -> int:
        allowed = list(kind.clauses)
        while allowed and cursor < len(lines) and lines[cursor].indent == indent:
            for position, clause in enumerate(allowed):
                captures = clause.pattern.match(lines[cursor].text)
                if captures is None:
                    continue
                slot = kind.continuation(params, clause.name, captures)
                end = self._block_end(lines, cursor)
                bodies.append((slot, lines[cursor + 1 : end]))
                cursor = end
                allowed = allowed[position:] if clause.repeat else allowed[position + 1 :]
                break
            else:
                break
        return cursor

    # -- expressions -------------------------------------------------------

    def _attach_value(self, node: Node, slot: str, text: str, line: int) -> None:
        declared = self._graph.kind_of(node).slot(slot, node.mutation)
        child = self._extract_expression(text, line, slot=declared)
        if child is not None:
            self._graph.attach(child.id, SlotRef(node.id, slot))

    def _extract_expression(self, text: str, line: int, slot: Slot | None = None, report: bool = True) -> Node | None:
        text = strip_parens(text)
        for kind in self.registry.expression_kinds():
            if slot is not None and not slot.check_compatible(kind):
                continue
            captures = kind.pattern.match(text)
            if captures is None:
                continue
            params = kind.extract(captures)
            if params is None:
                continue
            node = kind.construct(self._graph, params)
            for name, sub in params.values.items():
                self._attach_value(node, name, sub, line)
            return node
        if not report:
            return None
        self._report(UnrecognizedFragmentError(text, line, "no expression pattern matches"))
        if self.keep_unrecognized:
            return self._graph.new_node("opaque_expression", fields={"CODE": text})
        return None

    # -- helpers -----------------------------------------------------------

    def _unrecognized(self, lines: list[SourceLine], index: int, end: int, reason: str) -> Node | None:
        fragment = _fragment(lines[index:end])
        self._report(UnrecognizedFragmentError(fragment, lines[index].line, reason))
        if self.keep_unrecognized:
            return self._graph.new_node("opaque_statement", fields={"CODE": fragment})
        return None

    def _report(self, error: UnrecognizedFragmentError) -> None:
        if self.strict:
            raise error
        logger.warning("%s", error)
        self._errors.append(error)

    @staticmethod
    def _block_end(lines: list[SourceLine], index: int) -> int:
        """Index just past the lines indented under lines[index]."""
        indent = lines[index].indent
        end = index + 1
        while end < len(lines) and lines[end].indent > indent:
            end += 1
        return end


def _fragment(lines: list[SourceLine]) -> str:
    base = lines[0].indent
    out: list[str] = []
    for line in lines:
        prefix = " " * (line.indent - base)
        out.extend(prefix + row if row.strip() else row for row in line.raw.split("\n"))
    return "\n".join(out)
