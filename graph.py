from __future__ import annotations

import copy
import logging
import re
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator, NamedTuple

from registry import FIELD, STATEMENT, VALUE, BlockKind, BlockRegistry

logger = logging.getLogger(__name__)

NEXT = "next"

CREATED = "created"
MOVED = "moved"
FIELD_CHANGED = "fieldChanged"
DELETED = "deleted"


class GraphError(ValueError):
    """Raised when a graph operation is invalid."""


class StructuralViolationError(GraphError):
    """Raised when an edit would break the forest structure of the graph."""


class SlotRef(NamedTuple):
    node_id: str
    slot: str


@dataclass
class Node:
    id: str
    kind: str
    fields: dict[str, Any] = field(default_factory=dict)
    inputs: dict[str, str] = field(default_factory=dict)
    mutation: dict[str, int] = field(default_factory=dict)
    next: str | None = None
    parent: SlotRef | None = None
    disabled: bool = False


@dataclass(frozen=True)
class GraphEvent:
    type: str
    node_id: str
    old_parent: SlotRef | None = None
    new_parent: SlotRef | None = None
    name: str | None = None
    old_value: Any = None
    new_value: Any = None


Listener = Callable[[GraphEvent], None]


class Graph:
    """Arena of block nodes keyed by id.

    Every mutation runs inside a transaction. Events are buffered and
    delivered to listeners when the outermost transaction commits; callbacks
    registered with `defer` run afterwards, in the settle phase.
    """

    def __init__(self, registry: BlockRegistry, auto_settle: bool = True) -> None:
        self.registry = registry
        self.auto_settle = auto_settle
        self.nodes: dict[str, Node] = {}
        self.roots: list[str] = []
        self.variables: dict[str, str] = {}
        self._id_counter = 0
        self._var_counter = 0
        self._listeners: list[Listener] = []
        self._pending_events: list[GraphEvent] = []
        self._deferred: list[Callable[[], None]] = []
        self._depth = 0
        self._events_disabled = 0
        self._settling = False

    # -- queries ---------------------------------------------------------

    def __contains__(self, node_id: object) -> bool:
        return node_id in self.nodes

    def __len__(self) -> int:
        return len(self.nodes)

    def get(self, node_id: str) -> Node:
        node = self.nodes.get(node_id)
        if node is None:
            raise GraphError(f"Unknown node '{node_id}'.")
        return node

    def kind_of(self, node: Node) -> BlockKind:
        return self.registry.lookup(node.kind)

    def child(self, node: Node, slot: str) -> Node | None:
        child_id = node.next if slot == NEXT else node.inputs.get(slot)
        if child_id is None:
            return None
        return self.nodes.get(child_id)

    def chain(self, first_id: str | None) -> Iterator[Node]:
        current = first_id
        while current is not None:
            node = self.nodes[current]
            yield node
            current = node.next

    def descendants(self, node_id: str, include_next: bool = False) -> Iterator[Node]:
        """Preorder walk below a node; the node itself is not included."""
        node = self.get(node_id)
        stack: list[str] = []
        if include_next and node.next is not None:
            stack.append(node.next)
        stack.extend(reversed([node.inputs[slot] for slot in self._ordered_inputs(node)]))
        while stack:
            current = self.nodes[stack.pop()]
            yield current
            if current.next is not None:
                stack.append(current.next)
            stack.extend(reversed([current.inputs[slot] for slot in self._ordered_inputs(current)]))

    def subtree(self, node_id: str) -> list[str]:
        return [node_id] + [n.id for n in self.descendants(node_id, include_next=True)]

    def root_of(self, node_id: str) -> Node:
        node = self.get(node_id)
        while node.parent is not None:
            node = self.nodes[node.parent.node_id]
        return node

    def nodes_of_kind(self, tag: str) -> list[Node]:
        return [node for node in self.nodes.values() if node.kind == tag]

    def _ordered_inputs(self, node: Node) -> list[str]:
        kind = self.kind_of(node)
        order = [slot.name for slot in kind.slots_for(node.mutation) if slot.name in node.inputs]
        order.extend(name for name in node.inputs if name not in order)
        return order

    # -- variables -------------------------------------------------------

    def ensure_variable(self, name: str) -> str:
        for var_id, existing in self.variables.items():
            if existing == name:
                return var_id
        return self.add_variable(name)

    def add_variable(self, name: str, var_id: str | None = None) -> str:
        if var_id is None:
            self._var_counter += 1
            var_id = f"var_{self._var_counter}"
        elif var_id in self.variables:
            raise GraphError(f"Variable id '{var_id}' already exists.")
        else:
            self._var_counter = max(self._var_counter, _numeric_suffix(var_id, "var"))
        self.variables[var_id] = name
        return var_id

    def variable_name(self, var_id: Any, fallback: str = "x") -> str:
        name = self.variables.get(var_id)
        if name:
            return name
        if isinstance(var_id, str) and var_id and not re.fullmatch(r"[a-f0-9-]{8,}", var_id, re.IGNORECASE):
            return var_id
        return fallback

    # -- events and transactions ----------------------------------------

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        self._listeners.remove(listener)

    @contextmanager
    def events_disabled(self) -> Iterator["Graph"]:
        self._events_disabled += 1
        try:
            yield self
        finally:
            self._events_disabled -= 1

    @property
    def events_enabled(self) -> bool:
        return self._events_disabled == 0

    @contextmanager
    def transaction(self) -> Iterator["Graph"]:
        outermost = self._depth == 0
        snapshot = self._snapshot() if outermost else None
        self._depth += 1
        try:
            yield self
        except BaseException:
            self._depth -= 1
            if outermost:
                self._restore(snapshot)
                self._pending_events.clear()
                logger.debug("Transaction rolled back")
            raise
        self._depth -= 1
        if outermost:
            self._flush_events()
            if self.auto_settle:
                self.settle()

    def defer(self, callback: Callable[[], None]) -> None:
        """Queue a reaction for the settle phase; duplicates are dropped."""
        if callback not in self._deferred:
            self._deferred.append(callback)

    def settle(self) -> None:
        if self._settling:
            return
        self._settling = True
        try:
            while self._deferred:
                callback = self._deferred.pop(0)
                callback()
        finally:
            self._settling = False

    @property
    def pending(self) -> int:
        return len(self._deferred)

    def _emit(self, event: GraphEvent) -> None:
        if self._events_disabled:
            return
        self._pending_events.append(event)

    def _flush_events(self) -> None:
        while self._pending_events:
            events = self._pending_events
            self._pending_events = []
            for event in events:
                for listener in list(self._listeners):
                    listener(event)

    def _snapshot(self) -> tuple:
        return (
            [(node, copy.deepcopy(vars(node))) for node in self.nodes.values()],
            list(self.roots),
            dict(self.variables),
            self._id_counter,
            self._var_counter,
        )

    def _restore(self, snapshot: tuple) -> None:
        """Roll back in place so Node objects held by callers stay current."""
        states, roots, variables, self._id_counter, self._var_counter = snapshot
        self.nodes.clear()
        for node, state in states:
            vars(node).update(state)
            self.nodes[node.id] = node
        self.roots[:] = roots
        self.variables.clear()
        self.variables.update(variables)

    # -- mutations ---------------------------------------------------------

    def new_node(
        self,
        kind: str,
        fields: dict[str, Any] | None = None,
        mutation: dict[str, int] | None = None,
        node_id: str | None = None,
    ) -> Node:
        block_kind = self.registry.lookup(kind)
        if node_id is None:
            node_id = self._new_id("block")
        elif node_id in self.nodes:
            raise GraphError(f"Node id '{node_id}' already exists.")
        else:
            self._id_counter = max(self._id_counter, _numeric_suffix(node_id, "block"))
        values = {slot.name: slot.default for slot in block_kind.slots_for(mutation) if slot.kind == FIELD and slot.default is not None}
        values.update(fields or {})
        with self.transaction():
            node = Node(id=node_id, kind=kind, fields=values, mutation=dict(mutation or {}))
            self.nodes[node_id] = node
            self.roots.append(node_id)
            self._emit(GraphEvent(CREATED, node_id))
        return node

    def attach(self, node_id: str, target: SlotRef) -> None:
        problem = self.attach_problem(node_id, target)
        if problem is not None:
            raise StructuralViolationError(problem)
        with self.transaction():
            self._link(node_id, target)
            self._emit(GraphEvent(MOVED, node_id, old_parent=None, new_parent=target))

    def can_attach(self, node_id: str, target: SlotRef) -> bool:
        return self.attach_problem(node_id, target) is None

    def attach_problem(self, node_id: str, target: SlotRef) -> str | None:
        node = self.nodes.get(node_id)
        parent = self.nodes.get(target.node_id)
        if node is None:
            return f"Unknown node '{node_id}'."
        if parent is None:
            return f"Unknown node '{target.node_id}'."
        if node.parent is not None:
            return f"Node '{node_id}' is already attached to {node.parent.node_id}.{node.parent.slot}."
        kind = self.kind_of(node)
        parent_kind = self.kind_of(parent)
        if target.slot == NEXT:
            if not parent_kind.next or not kind.previous:
                return f"Cannot chain '{node.kind}' after '{parent.kind}'."
            if parent.next is not None:
                return f"Slot {target.node_id}.next is already occupied."
        else:
            slot = parent_kind.slot(target.slot, parent.mutation)
            if slot is None or slot.kind not in (VALUE, STATEMENT):
                return f"Block '{parent.kind}' has no input '{target.slot}'."
            if target.slot in parent.inputs:
                return f"Slot {target.node_id}.{target.slot} is already occupied."
            if not slot.check_compatible(kind):
                return f"Block '{node.kind}' does not fit input {parent.kind}.{target.slot}."
        ancestor: Node | None = parent
        while ancestor is not None:
            if ancestor.id == node_id:
                return f"Attaching '{node_id}' to {target.node_id}.{target.slot} would create a cycle."
            ancestor = self.nodes[ancestor.parent.node_id] if ancestor.parent else None
        return None

    def detach(self, node_id: str) -> None:
        self.move(node_id, None)

    def move(self, node_id: str, target: SlotRef | None) -> None:
        node = self.get(node_id)
        old_parent = node.parent
        if old_parent == target:
            return
        with self.transaction():
            if old_parent is not None:
                self._unlink(node)
            if target is not None:
                problem = self.attach_problem(node_id, target)
                if problem is not None:
                    raise StructuralViolationError(problem)
                self._link(node_id, target)
            self._emit(GraphEvent(MOVED, node_id, old_parent=old_parent, new_parent=target))

    def set_field(self, node_id: str, name: str, value: Any) -> None:
        node = self.get(node_id)
        slot = self.kind_of(node).slot(name, node.mutation)
        if slot is None or slot.kind != FIELD:
            raise GraphError(f"Block '{node.kind}' has no field '{name}'.")
        old = node.fields.get(name)
        if old == value:
            return
        with self.transaction():
            node.fields[name] = value
            self._emit(GraphEvent(FIELD_CHANGED, node_id, name=name, old_value=old, new_value=value))

    def set_mutation(self, node_id: str, mutation: dict[str, int]) -> None:
        """Reshape a node; children of inputs that disappear become roots."""
        node = self.get(node_id)
        kind = self.kind_of(node)
        old = dict(node.mutation)
        kept = {slot.name for slot in kind.slots_for(mutation)}
        with self.transaction():
            for slot_name in [name for name in node.inputs if name not in kept]:
                self.move(node.inputs[slot_name], None)
            node.mutation = dict(mutation)
            self._emit(GraphEvent(FIELD_CHANGED, node_id, name="mutation", old_value=old, new_value=dict(mutation)))

    def set_disabled(self, node_id: str, disabled: bool = True) -> None:
        node = self.get(node_id)
        if node.disabled == disabled:
            return
        with self.transaction():
            node.disabled = disabled
            self._emit(GraphEvent(FIELD_CHANGED, node_id, name="disabled", old_value=not disabled, new_value=disabled))

    def delete(self, node_id: str, heal: bool = False) -> list[str]:
        """Detach a node and sweep everything no longer reachable from a root.

        With `heal`, the statements chained below the node are reconnected to
        its old position instead of being deleted with it.
        """
        node = self.get(node_id)
        with self.transaction():
            old_parent = node.parent
            if heal and node.next is not None:
                rest = node.next
                self.move(rest, None)
                if old_parent is not None:
                    self.move(node_id, None)
                    self.move(rest, old_parent)
            if node.parent is not None:
                self.move(node_id, None)
            self.roots.remove(node_id)
            removed = self._sweep()
        return removed

    def _sweep(self) -> list[str]:
        reachable: set[str] = set()
        for root_id in self.roots:
            reachable.update(self.subtree(root_id))
        removed = [node_id for node_id in self.nodes if node_id not in reachable]
        for node_id in removed:
            node = self.nodes.pop(node_id)
            self._emit(GraphEvent(DELETED, node_id, old_parent=node.parent))
        if removed:
            logger.debug("Swept %d node(s): %s", len(removed), ", ".join(removed))
        return removed

    def _link(self, node_id: str, target: SlotRef) -> None:
        node = self.nodes[node_id]
        parent = self.nodes[target.node_id]
        if target.slot == NEXT:
            parent.next = node_id
        else:
            parent.inputs[target.slot] = node_id
        node.parent = target
        self.roots.remove(node_id)

    def _unlink(self, node: Node) -> None:
        parent = self.nodes[node.parent.node_id]
        if node.parent.slot == NEXT:
            parent.next = None
        else:
            del parent.inputs[node.parent.slot]
        node.parent = None
        self.roots.append(node.id)

    def _new_id(self, prefix: str) -> str:
        self._id_counter += 1
        return f"{prefix}_{self._id_counter}"


def _numeric_suffix(value: str, prefix: str) -> int:
    found = re.fullmatch(re.escape(prefix) + r"_(\d+)", value)
    return int(found.group(1)) if found else 0
