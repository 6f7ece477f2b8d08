from __future__ import annotations

import logging
from xml.etree import ElementTree as ET

from blocks import REGISTRY
from graph import Graph, Node, SlotRef
from registry import FIELD, VALUE, BlockKind, BlockRegistry, ParameterSet

logger = logging.getLogger(__name__)

BLOCKLY_XML_NS = "https://developers.google.com/blockly/xml"

# Toolbox order and colour per category.
BLOCK_CATEGORIES = {
    "Basic": "#0078D7",
    "Input": "#C724B1",
    "Loops": "#00aa00",
    "Led": "#6A1B9A",
    "Logic": "#00BCD4",
    "Variables": "#DC3545",
    "Text": "#F06292",
    "Maths": "#7B2D8F",
    "Music": "#EB4437",
    "Pins": "#b45309",
}

HIDDEN_CATEGORIES = {"Text"}

# Blockly fills this category itself from the workspace variables.
DYNAMIC_CATEGORIES = {"Variables": "VARIABLE_CUSTOM"}


def toolbox_xml(registry: BlockRegistry = REGISTRY) -> str:
    root = ET.Element("xml", {"xmlns": BLOCKLY_XML_NS, "id": "toolbox-categories", "style": "display: none"})
    groups = registry.by_category()
    for name, colour in BLOCK_CATEGORIES.items():
        if name in HIDDEN_CATEGORIES:
            continue
        category = ET.SubElement(root, "category", {"name": name, "colour": colour})
        if name in DYNAMIC_CATEGORIES:
            category.set("custom", DYNAMIC_CATEGORIES[name])
            continue
        for kind in groups.get(name, []):
            if kind.toolbox:
                category.append(_block_element(kind, registry))
    return ET.tostring(root, encoding="unicode")


def _block_element(kind: BlockKind, registry: BlockRegistry) -> ET.Element:
    block = ET.Element("block", {"type": kind.tag})
    for slot in kind.slots:
        if slot.kind == FIELD and slot.default is not None and not slot.variable:
            field = ET.SubElement(block, "field", {"name": slot.name})
            field.text = _text(slot.default)
        elif slot.kind == VALUE and slot.default_child is not None:
            child_tag, child_value = slot.default_child
            value = ET.SubElement(block, "value", {"name": slot.name})
            shadow = ET.SubElement(value, "shadow", {"type": child_tag})
            field_name = _primary_field(registry.lookup(child_tag))
            if field_name is not None:
                field = ET.SubElement(shadow, "field", {"name": field_name})
                field.text = _text(child_value)
    return block


def _primary_field(kind: BlockKind) -> str | None:
    for slot in kind.slots:
        if slot.kind == FIELD:
            return slot.name
    return None


def _text(value: object) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def build_example(graph: Graph, tag: str) -> Node:
    """Create a node of `tag` with its suggested default children attached."""
    kind = graph.registry.lookup(tag)
    with graph.transaction():
        node = kind.construct(graph, ParameterSet())
        for slot in kind.slots_for(node.mutation):
            if slot.kind != VALUE or slot.default_child is None:
                continue
            child_tag, child_value = slot.default_child
            child_kind = graph.registry.lookup(child_tag)
            field_name = _primary_field(child_kind)
            fields = {field_name: child_value} if field_name is not None else {}
            child = child_kind.construct(graph, ParameterSet(fields=fields))
            graph.attach(child.id, SlotRef(node.id, slot.name))
    logger.debug("Built example %s for %s", node.id, tag)
    return node
