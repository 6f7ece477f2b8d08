from __future__ import annotations

import logging
from typing import NamedTuple

from graph import DELETED, MOVED, Graph, GraphEvent, SlotRef

logger = logging.getLogger(__name__)


class TrackedReference(NamedTuple):
    loop_id: str
    slot: str
    variable_id: str


class LoopVariableMaintainer:
    """Keeps the variable slot of every counting loop filled.

    When the variable reference under a loop is dragged out, a fresh
    reference to the same variable is put back in the settle phase, after
    the edit that removed it has committed. If something else fills the
    slot in the meantime, or the loop itself is deleted, nothing happens.
    """

    TRACKED_SLOTS = {("loops_for_range", "VAR"), ("loops_for_of", "VAR")}

    def __init__(self, graph: Graph) -> None:
        self.graph = graph
        self.tracked: dict[str, TrackedReference] = {}
        self._repairs: list[TrackedReference] = []
        self._installed = False

    def install(self) -> "LoopVariableMaintainer":
        if not self._installed:
            self.graph.add_listener(self.handle_event)
            self._installed = True
        self.rescan()
        return self

    def uninstall(self) -> None:
        if self._installed:
            self.graph.remove_listener(self.handle_event)
            self._installed = False
        self.tracked.clear()
        self._repairs.clear()

    def rescan(self) -> None:
        """Re-derive the tracking table from the current graph."""
        tracked: dict[str, TrackedReference] = {}
        for node in self.graph.nodes.values():
            if node.parent is None:
                continue
            reference = self._reference(node.id, node.parent)
            if reference is not None:
                tracked[node.id] = reference
        self.tracked = tracked

    def _reference(self, node_id: str, parent: SlotRef) -> TrackedReference | None:
        node = self.graph.nodes.get(node_id)
        owner = self.graph.nodes.get(parent.node_id)
        if node is None or owner is None or (owner.kind, parent.slot) not in self.TRACKED_SLOTS:
            return None
        var_id = node.fields.get("VAR")
        if node.kind != "variables_get" or not var_id:
            return None
        return TrackedReference(owner.id, parent.slot, var_id)

    def handle_event(self, event: GraphEvent) -> None:
        reference = self.tracked.get(event.node_id)
        if reference is not None:
            if event.type == MOVED:
                node = self.graph.nodes.get(event.node_id)
                if node is not None and node.fields.get("VAR"):
                    reference = reference._replace(variable_id=node.fields["VAR"])
                if event.new_parent != SlotRef(reference.loop_id, reference.slot):
                    del self.tracked[event.node_id]
                    self._repairs.append(reference)
                    self.graph.defer(self._flush_repairs)
            elif event.type == DELETED:
                del self.tracked[event.node_id]
        if event.type == MOVED and event.new_parent is not None:
            # Tracked on arrival, not only at the next rescan.
            arrived = self._reference(event.node_id, event.new_parent)
            if arrived is not None:
                self.tracked[event.node_id] = arrived
        self.graph.defer(self.rescan)

    def _flush_repairs(self) -> None:
        repairs, self._repairs = self._repairs, []
        for reference in repairs:
            self._repair(reference)

    def _repair(self, reference: TrackedReference) -> None:
        loop = self.graph.nodes.get(reference.loop_id)
        if loop is None:
            logger.debug("Loop %s is gone; nothing to repair", reference.loop_id)
            return
        if reference.slot in loop.inputs:
            logger.debug("Slot %s.%s was refilled; nothing to repair", reference.loop_id, reference.slot)
            return
        with self.graph.events_disabled(), self.graph.transaction():
            node = self.graph.new_node("variables_get", fields={"VAR": reference.variable_id})
            self.graph.attach(node.id, SlotRef(loop.id, reference.slot))
        self.tracked[node.id] = TrackedReference(loop.id, reference.slot, reference.variable_id)
        logger.debug("Restored %s.%s with %s", loop.id, reference.slot, node.id)
