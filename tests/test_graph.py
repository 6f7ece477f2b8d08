"""Tests for the block graph: structure, transactions and events."""
import pytest

from blocks import REGISTRY
from graph import CREATED, DELETED, FIELD_CHANGED, MOVED, NEXT, Graph, GraphError, SlotRef, StructuralViolationError


@pytest.fixture
def graph():
    return Graph(REGISTRY)


def _stack(graph, *tags):
    nodes = [graph.new_node(tag) for tag in tags]
    for prev, node in zip(nodes, nodes[1:]):
        graph.attach(node.id, SlotRef(prev.id, NEXT))
    return nodes


class TestStructure:
    def test_new_node_fills_field_defaults(self, graph):
        node = graph.new_node("pause")
        assert node.id == "block_1"
        assert node.fields == {"TIME": 100}
        assert graph.roots == ["block_1"]

    def test_attach_value_and_statement(self, graph):
        hat = graph.new_node("forever")
        show = graph.new_node("show_number")
        num = graph.new_node("math_number", fields={"NUM": 3})
        graph.attach(show.id, SlotRef(hat.id, "DO"))
        graph.attach(num.id, SlotRef(show.id, "NUM"))
        assert graph.roots == [hat.id]
        assert num.parent == SlotRef(show.id, "NUM")
        assert graph.root_of(num.id) is hat

    def test_occupied_slot_rejected(self, graph):
        show = graph.new_node("show_number")
        graph.attach(graph.new_node("math_number").id, SlotRef(show.id, "NUM"))
        with pytest.raises(StructuralViolationError, match="occupied"):
            graph.attach(graph.new_node("math_number").id, SlotRef(show.id, "NUM"))

    def test_incompatible_value_rejected(self, graph):
        show = graph.new_node("show_string")
        number = graph.new_node("math_number")
        assert not graph.can_attach(number.id, SlotRef(show.id, "TEXT"))
        with pytest.raises(StructuralViolationError):
            graph.attach(number.id, SlotRef(show.id, "TEXT"))

    def test_hat_cannot_be_chained(self, graph):
        pause = graph.new_node("pause")
        hat = graph.new_node("forever")
        with pytest.raises(StructuralViolationError):
            graph.attach(hat.id, SlotRef(pause.id, NEXT))

    def test_cycle_rejected(self, graph):
        outer = graph.new_node("loops_repeat")
        inner = graph.new_node("loops_repeat")
        graph.attach(inner.id, SlotRef(outer.id, "DO"))
        graph.detach(outer.id)
        problem = graph.attach_problem(outer.id, SlotRef(inner.id, "DO"))
        assert problem is not None and "cycle" in problem

    def test_chain_and_descendants(self, graph):
        first, second, third = _stack(graph, "clear_screen", "pause", "show_icon")
        assert [n.id for n in graph.chain(first.id)] == [first.id, second.id, third.id]
        assert [n.id for n in graph.descendants(first.id, include_next=True)] == [second.id, third.id]
        assert graph.subtree(second.id) == [second.id, third.id]

    def test_move_between_parents(self, graph):
        a = graph.new_node("loops_repeat")
        b = graph.new_node("loops_repeat")
        pause = graph.new_node("pause")
        graph.attach(pause.id, SlotRef(a.id, "DO"))
        graph.move(pause.id, SlotRef(b.id, "DO"))
        assert "DO" not in a.inputs
        assert b.inputs["DO"] == pause.id

    def test_set_mutation_detaches_removed_inputs(self, graph):
        node = graph.new_node("controls_if", mutation={"elseif": 1})
        cond = graph.new_node("logic_boolean")
        graph.attach(cond.id, SlotRef(node.id, "IF1"))
        graph.set_mutation(node.id, {})
        assert cond.parent is None
        assert cond.id in graph.roots

    def test_unknown_field_rejected(self, graph):
        node = graph.new_node("pause")
        with pytest.raises(GraphError):
            graph.set_field(node.id, "NOPE", 1)


class TestDelete:
    def test_delete_sweeps_subtree(self, graph):
        show = graph.new_node("show_number")
        num = graph.new_node("math_number")
        graph.attach(num.id, SlotRef(show.id, "NUM"))
        removed = graph.delete(show.id)
        assert set(removed) == {show.id, num.id}
        assert len(graph) == 0

    def test_delete_with_heal_keeps_rest_of_stack(self, graph):
        hat = graph.new_node("forever")
        first, second, third = _stack(graph, "clear_screen", "pause", "show_icon")
        graph.attach(first.id, SlotRef(hat.id, "DO"))
        graph.delete(second.id, heal=True)
        assert [n.id for n in graph.chain(first.id)] == [first.id, third.id]

    def test_delete_without_heal_drops_rest_of_stack(self, graph):
        first, second, third = _stack(graph, "clear_screen", "pause", "show_icon")
        graph.delete(second.id)
        assert first.next is None
        assert third.id not in graph


class TestTransactions:
    def test_events_are_buffered_until_commit(self, graph):
        seen = []
        graph.add_listener(seen.append)
        with graph.transaction():
            node = graph.new_node("pause")
            graph.set_field(node.id, "TIME", 200)
            assert seen == []
        assert [e.type for e in seen] == [CREATED, FIELD_CHANGED]
        assert seen[1].old_value == 100 and seen[1].new_value == 200

    def test_rollback_restores_state(self, graph):
        graph.new_node("pause")
        with pytest.raises(StructuralViolationError):
            with graph.transaction():
                graph.new_node("clear_screen")
                graph.attach("block_1", SlotRef("block_2", "NUM"))
        assert list(graph.nodes) == ["block_1"]
        assert graph.roots == ["block_1"]

    def test_rollback_keeps_node_handles_current(self, graph):
        show = graph.new_node("show_number")
        text = graph.new_node("show_string")
        number = graph.new_node("math_number")
        graph.attach(number.id, SlotRef(show.id, "NUM"))
        with pytest.raises(StructuralViolationError):
            graph.move(number.id, SlotRef(text.id, "TEXT"))
        assert graph.nodes[show.id] is show
        assert graph.nodes[number.id] is number
        assert show.inputs == {"NUM": number.id}
        assert number.parent == SlotRef(show.id, "NUM")
        assert graph.child(show, "NUM") is number

    def test_rollback_drops_nodes_created_inside(self, graph):
        first = graph.new_node("pause")
        with pytest.raises(StructuralViolationError):
            with graph.transaction():
                second = graph.new_node("clear_screen")
                graph.attach(second.id, SlotRef(first.id, "next"))
                graph.attach(first.id, SlotRef(second.id, "next"))
        assert second.id not in graph
        assert first.next is None
        assert graph.nodes[first.id] is first

    def test_events_disabled(self, graph):
        seen = []
        graph.add_listener(seen.append)
        with graph.events_disabled():
            graph.new_node("pause")
        assert seen == []
        assert graph.events_enabled

    def test_deferred_callbacks_run_after_events(self, graph):
        order = []

        def listener(event):
            order.append(event.type)
            graph.defer(callback)

        def callback():
            order.append("settle")

        graph.add_listener(listener)
        with graph.transaction():
            node = graph.new_node("pause")
            graph.delete(node.id)
        assert order == [CREATED, DELETED, "settle"]

    def test_manual_settle(self):
        graph = Graph(REGISTRY, auto_settle=False)
        calls = []
        graph.add_listener(lambda event: graph.defer(lambda: calls.append(event.type)))
        graph.new_node("pause")
        assert calls == []
        assert graph.pending == 1
        graph.settle()
        assert calls == [CREATED]

    def test_moved_event_carries_parents(self, graph):
        seen = []
        loop = graph.new_node("loops_repeat")
        pause = graph.new_node("pause")
        graph.add_listener(seen.append)
        graph.attach(pause.id, SlotRef(loop.id, "DO"))
        graph.detach(pause.id)
        assert [(e.type, e.old_parent, e.new_parent) for e in seen] == [
            (MOVED, None, SlotRef(loop.id, "DO")),
            (MOVED, SlotRef(loop.id, "DO"), None),
        ]


class TestVariables:
    def test_ensure_variable_reuses_ids(self, graph):
        first = graph.ensure_variable("score")
        assert graph.ensure_variable("score") == first
        assert graph.variable_name(first) == "score"

    def test_unknown_variable_name_fallback(self, graph):
        assert graph.variable_name("counter") == "counter"
        assert graph.variable_name("0f3a9b2c-1d4e") == "x"
        assert graph.variable_name(None) == "x"
