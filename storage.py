from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from graph import NEXT, Graph, GraphError, SlotRef
from registry import BlockRegistry, RegistryError

logger = logging.getLogger(__name__)

FORMAT_VERSION = 1


class StorageError(ValueError):
    """Raised when a stored graph document cannot be read."""


def graph_to_dict(graph: Graph) -> dict[str, Any]:
    blocks: dict[str, Any] = {}
    for root_id in graph.roots:
        for node_id in graph.subtree(root_id):
            node = graph.nodes[node_id]
            entry: dict[str, Any] = {"kind": node.kind}
            if node.fields:
                entry["fields"] = dict(node.fields)
            if node.inputs:
                entry["inputs"] = dict(node.inputs)
            if node.mutation:
                entry["mutation"] = dict(node.mutation)
            if node.next is not None:
                entry["next"] = node.next
            if node.disabled:
                entry["disabled"] = True
            blocks[node_id] = entry
    return {
        "version": FORMAT_VERSION,
        "variables": dict(graph.variables),
        "roots": list(graph.roots),
        "blocks": blocks,
    }


def graph_from_dict(data: Any, registry: BlockRegistry, auto_settle: bool = True) -> Graph:
    if not isinstance(data, dict):
        raise StorageError("Stored graph must be a JSON object.")
    version = data.get("version", FORMAT_VERSION)
    if version != FORMAT_VERSION:
        raise StorageError(f"Unsupported graph format version {version!r}.")
    variables = data.get("variables", {})
    roots = data.get("roots", [])
    blocks = data.get("blocks", {})
    if not isinstance(variables, dict) or not isinstance(roots, list) or not isinstance(blocks, dict):
        raise StorageError("Stored graph must have 'variables', 'roots' and 'blocks' of the right types.")

    graph = Graph(registry, auto_settle=auto_settle)
    try:
        with graph.transaction():
            for var_id, name in variables.items():
                graph.add_variable(str(name), var_id=str(var_id))
            for root_id in roots:
                _restore(graph, blocks, root_id, None, set())
    except (GraphError, RegistryError) as exc:
        raise StorageError(f"Invalid stored graph: {exc}") from exc
    unused = set(blocks) - set(graph.nodes)
    if unused:
        logger.warning("Ignored %d unreachable stored block(s): %s", len(unused), ", ".join(sorted(unused)))
    return graph


def _restore(graph: Graph, blocks: dict[str, Any], node_id: str, target: SlotRef | None, seen: set[str]) -> None:
    # Follows the next chain in a loop; inputs recurse.
    current: str | None = node_id
    while current is not None:
        if current in seen:
            raise StorageError(f"Block '{current}' is referenced more than once.")
        seen.add(current)
        entry = blocks.get(current)
        if not isinstance(entry, dict) or "kind" not in entry:
            raise StorageError(f"Missing or malformed block '{current}'.")
        node = graph.new_node(
            entry["kind"],
            fields=dict(entry.get("fields", {})),
            mutation=dict(entry.get("mutation", {})),
            node_id=current,
        )
        if entry.get("disabled"):
            node.disabled = True
        if target is not None:
            graph.attach(node.id, target)
        for slot, child_id in entry.get("inputs", {}).items():
            _restore(graph, blocks, child_id, SlotRef(node.id, slot), seen)
        current = entry.get("next")
        target = SlotRef(node.id, NEXT)


def save_graph(graph: Graph, output_path: Path) -> None:
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(json.dumps(graph_to_dict(graph), indent=2) + "\n", encoding="utf-8")


def load_graph(input_path: Path, registry: BlockRegistry, auto_settle: bool = True) -> Graph:
    if not input_path.exists() or not input_path.is_file():
        raise StorageError(f"Input file not found: '{input_path}'.")
    try:
        data = json.loads(input_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise StorageError(f"Invalid JSON (line {exc.lineno}, column {exc.colno}): {exc.msg}") from exc
    return graph_from_dict(data, registry, auto_settle=auto_settle)
