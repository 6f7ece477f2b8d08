from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from difflib import get_close_matches
from typing import Any, Callable, Iterable, Mapping

from lexer import KEYWORDS, find_operator, split_top_level

logger = logging.getLogger(__name__)

FIELD = "field"
VALUE = "value"
STATEMENT = "statement"


class RegistryError(ValueError):
    """Raised when the block registry is misused."""


class DuplicateKindError(RegistryError):
    """Raised when a block kind tag is registered twice."""


class UnknownKindError(RegistryError):
    """Raised when a block kind tag is not registered."""


@dataclass(frozen=True)
class Slot:
    """Named attachment point on a block: a field, a value input or a statement input."""

    name: str
    kind: str = FIELD
    check: tuple[str, ...] | None = None
    default: Any = None
    placeholder: str = ""
    options: tuple[str, ...] | None = None
    variable: bool = False
    default_child: tuple[str, Any] | None = None

    def check_compatible(self, kind: "BlockKind") -> bool:
        """Check if a block kind can be plugged into this slot."""
        if self.kind == VALUE:
            if not kind.is_expression:
                return False
            if not self.check or not kind.output:
                return True
            return bool(set(self.check) & set(kind.output))
        if self.kind == STATEMENT:
            return kind.previous
        return False


@dataclass
class ParameterSet:
    fields: dict[str, Any] = field(default_factory=dict)
    values: dict[str, str] = field(default_factory=dict)
    mutation: dict[str, int] = field(default_factory=dict)


class Pattern:
    """Recognizer for one logical line or one expression."""

    def match(self, text: str) -> dict[str, str] | None:
        raise NotImplementedError


class RegexPattern(Pattern):
    def __init__(self, regex: str, flags: int = 0) -> None:
        self.regex = re.compile(regex, flags | re.DOTALL)

    def match(self, text: str) -> dict[str, str] | None:
        found = self.regex.fullmatch(text.strip())
        if found is None:
            return None
        return {name: value for name, value in found.groupdict().items() if value is not None}

    def __repr__(self) -> str:
        return f"RegexPattern({self.regex.pattern!r})"


class CallPattern(Pattern):
    """Matches `callee(arg, ...)`, splitting arguments at top-level commas.

    Each argument must fully match its own regex; named groups from all
    argument regexes are merged into the captures.
    """

    def __init__(self, callee: str, *args: str, awaitable: bool = True) -> None:
        self.callee = callee
        prefix = r"(?:await\s+)?" if awaitable else ""
        self._head = re.compile(prefix + re.escape(callee) + r"\s*\((?P<args>.*)\)", re.DOTALL)
        self.args = [re.compile(arg, re.DOTALL) for arg in args]

    def match(self, text: str) -> dict[str, str] | None:
        found = self._head.fullmatch(text.strip())
        if found is None:
            return None
        parts = split_top_level(found.group("args"))
        if parts is None or len(parts) != len(self.args):
            return None
        captures: dict[str, str] = {}
        for part, regex in zip(parts, self.args):
            arg = regex.fullmatch(part)
            if arg is None:
                return None
            captures.update({k: v for k, v in arg.groupdict().items() if v is not None})
        return captures

    def __repr__(self) -> str:
        return f"CallPattern({self.callee!r})"


class OperatorPattern(Pattern):
    """Splits an expression at its weakest top-level binary operator.

    `levels` runs from the loosest binding level to the tightest; each entry
    is (operators, right_associative).
    """

    def __init__(self, levels: Iterable[tuple[Iterable[str], bool]], left: str = "A", right: str = "B", op: str = "OP") -> None:
        self.levels = [(set(ops), right_assoc) for ops, right_assoc in levels]
        self.left = left
        self.right = right
        self.op = op

    def match(self, text: str) -> dict[str, str] | None:
        for ops, right_assoc in self.levels:
            found = find_operator(text, ops, right_assoc=right_assoc)
            if found is None:
                continue
            left, op, right = found
            if not left or not right:
                return None
            return {self.left: left, self.op: op, self.right: right}
        return None

    def __repr__(self) -> str:
        return f"OperatorPattern({[sorted(ops) for ops, _ in self.levels]!r})"


@dataclass(frozen=True)
class Clause:
    """Continuation header of a compound statement, such as `elif` or `else`."""

    name: str
    pattern: Pattern
    repeat: bool = False


Generator = Callable[[Any, Any], Any]
Extractor = Callable[[Mapping[str, str]], "ParameterSet | None"]
Constructor = Callable[[Any, ParameterSet], Any]


@dataclass(frozen=True)
class BlockKind:
    tag: str
    category: str
    slots: tuple[Slot, ...] = ()
    output: tuple[str, ...] | None = None
    previous: bool = False
    next: bool = False
    hat: bool = False
    generator: Generator | None = None
    pattern: Pattern | None = None
    extractor: Extractor | None = None
    constructor: Constructor | None = None
    specificity: int = 0
    body: str | None = None
    clauses: tuple[Clause, ...] = ()
    continuation: Callable[[ParameterSet, str, Mapping[str, str]], str] | None = None
    trailer: Pattern | None = None
    tail: Pattern | None = None
    procedure_name: Callable[[Mapping[str, Any]], str] | None = None
    shape: Callable[[Mapping[str, int]], tuple[Slot, ...]] | None = None
    toolbox: bool = True
    tooltip: str = ""

    @property
    def is_expression(self) -> bool:
        return self.output is not None

    def slots_for(self, mutation: Mapping[str, int] | None = None) -> tuple[Slot, ...]:
        if self.shape is not None:
            return self.shape(mutation or {})
        return self.slots

    def slot(self, name: str, mutation: Mapping[str, int] | None = None) -> Slot | None:
        for slot in self.slots_for(mutation):
            if slot.name == name:
                return slot
        return None

    def extract(self, captures: Mapping[str, str]) -> ParameterSet | None:
        if self.extractor is not None:
            return self.extractor(captures)
        return default_parameters(self.slots, captures)

    def construct(self, graph, params: ParameterSet):
        if self.constructor is not None:
            return self.constructor(graph, params)
        return default_constructor(self, graph, params)


def parse_number(text: str) -> int | float:
    value = float(text)
    if value.is_integer() and "." not in text:
        return int(value)
    return value


def default_parameters(slots: Iterable[Slot], captures: Mapping[str, str]) -> ParameterSet | None:
    """Map captures named after slots onto fields and value inputs."""
    params = ParameterSet()
    for slot in slots:
        raw = captures.get(slot.name)
        if raw is None:
            continue
        raw = raw.strip()
        if slot.kind == VALUE:
            params.values[slot.name] = raw
            continue
        if slot.kind != FIELD:
            continue
        if slot.variable:
            if raw in KEYWORDS or not re.fullmatch(r"[A-Za-z_]\w*", raw):
                return None
            params.fields[slot.name] = raw
        elif slot.options is not None:
            if raw not in slot.options:
                return None
            params.fields[slot.name] = raw
        elif isinstance(slot.default, (int, float)) and not isinstance(slot.default, bool):
            try:
                params.fields[slot.name] = parse_number(raw)
            except ValueError:
                return None
        else:
            params.fields[slot.name] = raw
    return params


def default_constructor(kind: BlockKind, graph, params: ParameterSet):
    fields = dict(params.fields)
    for slot in kind.slots_for(params.mutation):
        if slot.variable and slot.name in fields:
            fields[slot.name] = graph.ensure_variable(fields[slot.name])
    return graph.new_node(kind.tag, fields=fields, mutation=params.mutation)


class BlockRegistry:
    """Catalog of block kinds, keyed by tag.

    Kinds are registered once at startup and the registry is sealed before
    any compilation or extraction runs.
    """

    def __init__(self) -> None:
        self._kinds: dict[str, BlockKind] = {}
        self._sealed = False
        self._ordered: list[BlockKind] | None = None

    def register(self, kind: BlockKind) -> BlockKind:
        if self._sealed:
            raise RegistryError(f"Cannot register '{kind.tag}': registry is sealed.")
        if kind.tag in self._kinds:
            raise DuplicateKindError(f"Block kind '{kind.tag}' is already registered.")
        if kind.is_expression and (kind.previous or kind.next):
            raise RegistryError(f"Block kind '{kind.tag}' cannot be both an expression and a statement.")
        self._kinds[kind.tag] = kind
        self._ordered = None
        logger.debug("Registered block kind %s (%s)", kind.tag, kind.category)
        return kind

    def seal(self) -> None:
        self._sealed = True

    @property
    def sealed(self) -> bool:
        return self._sealed

    def lookup(self, tag: str) -> BlockKind:
        kind = self._kinds.get(tag)
        if kind is None:
            similar = get_close_matches(tag, self._kinds.keys(), n=3, cutoff=0.6)
            msg = f"Block kind '{tag}' is not registered."
            if similar:
                msg += f" Did you mean: {', '.join(similar)}?"
            raise UnknownKindError(msg)
        return kind

    def __contains__(self, tag: object) -> bool:
        return tag in self._kinds

    def __iter__(self):
        return iter(self._kinds.values())

    def __len__(self) -> int:
        return len(self._kinds)

    def ordered(self) -> list[BlockKind]:
        """Kinds with a pattern, most specific first, ties in registration order."""
        if self._ordered is None:
            indexed = [(i, kind) for i, kind in enumerate(self._kinds.values()) if kind.pattern is not None]
            indexed.sort(key=lambda item: (-item[1].specificity, item[0]))
            self._ordered = [kind for _, kind in indexed]
        return self._ordered

    def statement_kinds(self, top_level: bool = False) -> list[BlockKind]:
        return [k for k in self.ordered() if not k.is_expression and (top_level or not k.hat)]

    def expression_kinds(self) -> list[BlockKind]:
        return [k for k in self.ordered() if k.is_expression]

    def by_category(self) -> dict[str, list[BlockKind]]:
        groups: dict[str, list[BlockKind]] = {}
        for kind in self._kinds.values():
            groups.setdefault(kind.category, []).append(kind)
        return groups
