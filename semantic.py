from __future__ import annotations

import logging
from dataclasses import dataclass

from blocks import EVENT_CONTAINERS
from graph import Graph, Node

logger = logging.getLogger(__name__)

ERROR = "error"
WARNING = "warning"

# Statements and readings that only run inside an event handler.
GATED_KINDS = frozenset(
    {
        "plot_led",
        "unplot_led",
        "toggle_led",
        "plot_led_brightness",
        "clear_screen",
        "show_string",
        "show_number",
        "basic_show_leds",
        "pause",
        "show_icon",
        "math_random_int",
        "music_play_tone",
        "music_ring_tone",
        "music_rest",
        "music_record_and_play",
        "controls_if",
        "is_gesture",
        "light_level",
        "temperature",
    }
)


class SemanticError(ValueError):
    """Raised when semantic validation fails."""


@dataclass(frozen=True)
class Diagnostic:
    severity: str
    message: str
    node_id: str | None = None

    def __str__(self) -> str:
        where = f" [{self.node_id}]" if self.node_id else ""
        return f"{self.severity}: {self.message}{where}"


def analyze(graph: Graph) -> list[Diagnostic]:
    diagnostics: list[Diagnostic] = []
    diagnostics.extend(_check_handlers(graph))
    for node in graph.nodes_of_kind("loops_for_of"):
        diagnostics.extend(_check_for_of(graph, node))
    for node in graph.nodes.values():
        if node.kind in GATED_KINDS and not node.disabled and not _in_event_container(graph, node):
            diagnostics.append(Diagnostic(WARNING, f"Block '{node.kind}' is not inside an event handler and never runs.", node.id))
    for diagnostic in diagnostics:
        logger.debug("%s", diagnostic)
    return diagnostics


def ensure_valid(graph: Graph) -> list[Diagnostic]:
    """Raise on the first error diagnostic; return the warnings."""
    diagnostics = analyze(graph)
    for diagnostic in diagnostics:
        if diagnostic.severity == ERROR:
            raise SemanticError(str(diagnostic))
    return diagnostics


def handler_name(graph: Graph, node: Node) -> str | None:
    kind = graph.kind_of(node)
    if not kind.hat or kind.procedure_name is None:
        return None
    return kind.procedure_name(node.fields)


def enforce_unique_handlers(graph: Graph) -> list[str]:
    """Keep the first handler per procedure name enabled and disable the rest.

    Returns the ids of the handlers that were disabled.
    """
    seen: set[str] = set()
    disabled: list[str] = []
    with graph.transaction():
        for root_id in list(graph.roots):
            node = graph.nodes[root_id]
            name = handler_name(graph, node)
            if name is None:
                continue
            if name in seen:
                if not node.disabled:
                    graph.set_disabled(node.id, True)
                    disabled.append(node.id)
                continue
            seen.add(name)
            graph.set_disabled(node.id, False)
    if disabled:
        logger.info("Disabled duplicate handler(s): %s", ", ".join(disabled))
    return disabled


def _check_handlers(graph: Graph) -> list[Diagnostic]:
    diagnostics: list[Diagnostic] = []
    first: dict[str, str] = {}
    for root_id in graph.roots:
        node = graph.nodes[root_id]
        name = handler_name(graph, node)
        if name is None or node.disabled:
            continue
        if name in first:
            diagnostics.append(
                Diagnostic(ERROR, f"Handler '{name}' is already defined by block '{first[name]}'.", node.id)
            )
            continue
        first[name] = node.id
    return diagnostics


def _check_for_of(graph: Graph, node: Node) -> list[Diagnostic]:
    variable = graph.child(node, "VAR")
    items = graph.child(node, "LIST")
    if items is None:
        return [Diagnostic(WARNING, "'for ... of' loop has no list to iterate.", node.id)]
    if (
        variable is not None
        and variable.kind == "variables_get"
        and items.kind == "variables_get"
        and variable.fields.get("VAR") == items.fields.get("VAR")
    ):
        name = graph.variable_name(variable.fields.get("VAR"))
        return [Diagnostic(ERROR, f"'for {name} in {name}' iterates over its own loop variable.", node.id)]
    return []


def _in_event_container(graph: Graph, node: Node) -> bool:
    current = node
    while current.parent is not None:
        current = graph.nodes[current.parent.node_id]
        if current.kind in EVENT_CONTAINERS and not current.disabled:
            return True
    return False
