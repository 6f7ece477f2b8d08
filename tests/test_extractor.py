"""Tests for rebuilding block graphs from Python source."""
import pytest

from blocks import REGISTRY
from codegen import generate_source
from extractor import Extractor, UnrecognizedFragmentError
from graph import Graph, SlotRef
from toolbox import build_example


def _extract(text, **kwargs):
    return Extractor(REGISTRY, **kwargs).extract(text)


def _roots(graph):
    return [graph.nodes[root_id] for root_id in graph.roots]


TOOLBOX_TAGS = [kind.tag for kind in REGISTRY if kind.toolbox]


class TestRoundTrip:
    @pytest.mark.parametrize("tag", TOOLBOX_TAGS)
    def test_example_round_trip(self, tag):
        graph = Graph(REGISTRY)
        build_example(graph, tag)
        source = generate_source(graph)
        extraction = _extract(source)
        assert extraction.unrecognized == []
        assert generate_source(extraction.graph) == source

    def test_program_round_trip(self):
        source = (
            "def on_button_pressed_a():\n"
            '    basic.show_string("A")\n'
            "input.on_button_pressed(Button.A, on_button_pressed_a)\n"
            "\n"
            "def on_forever():\n"
            "    for index in range(0, (4) + 1):\n"
            "        if led.point(index, 2) and not input.logo_is_pressed():\n"
            "            led.unplot(index, 2)\n"
            "        elif temperature_reading > 20:\n"
            "            led.plot(index, 2)\n"
            "        else:\n"
            "            led.toggle(index, (index + 1) * 2)\n"
            "    basic.pause(100)\n"
            "basic.forever(on_forever)\n"
            "\n"
            "score = 0\n"
            "score += random.randint(1, 6)\n"
        )
        extraction = _extract(source)
        assert extraction.unrecognized == []
        assert generate_source(extraction.graph) == source

    @pytest.mark.parametrize("tag, names", [("loops_for_range", "index"), ("loops_for_of", "value, list")])
    def test_every_interval_with_empty_loop_round_trip(self, tag, names):
        graph = Graph(REGISTRY)
        hat = graph.new_node("loops_every_interval")
        graph.attach(graph.new_node(tag).id, SlotRef(hat.id, "DO"))
        source = generate_source(graph)
        assert f"    global {names}\n" in source
        extraction = _extract(source)
        assert extraction.unrecognized == []
        assert generate_source(extraction.graph) == source

    def test_every_interval_globals_follow_slot_order(self):
        graph = Graph(REGISTRY)
        hat = graph.new_node("loops_every_interval")
        loop = graph.new_node("loops_for_of")
        graph.attach(loop.id, SlotRef(hat.id, "DO"))
        item = graph.new_node("variables_get", fields={"VAR": graph.ensure_variable("item")})
        graph.attach(item.id, SlotRef(loop.id, "VAR"))
        source = generate_source(graph)
        assert "    global item, list\n" in source
        assert generate_source(_extract(source).graph) == source

    @pytest.mark.parametrize(
        "source",
        [
            "basic.pause(0.5)\n",
            "music.play_tone(261.5, 1)\n",
            "music.ring_tone(440.25)\n",
            "led.plot_brightness(0, 0, 12.5)\n",
        ],
    )
    def test_fractional_field_round_trip(self, source):
        extraction = _extract(source)
        assert extraction.unrecognized == []
        assert generate_source(extraction.graph) == source

    def test_precedence_round_trip(self):
        source = "x = (1 + 2) * 3 - (4 - 5) / 2 ** 3 ** 2\n"
        extraction = _extract(source)
        assert generate_source(extraction.graph) == source


class TestStatements:
    def test_button_handler(self):
        graph = _extract(
            "def on_button_pressed_b():\n"
            "    display.show(Image.HAPPY)\n"
            "input.on_button_pressed(Button.B, on_button_pressed_b)\n"
        ).graph
        (hat,) = _roots(graph)
        assert hat.kind == "on_button_pressed"
        assert hat.fields["BUTTON"] == "B"
        body = graph.child(hat, "DO")
        assert body.kind == "show_icon"
        assert body.fields["ICON"] == "HAPPY"

    def test_registration_line_is_optional(self):
        graph = _extract("def on_forever():\n    display.clear()\n").graph
        assert [n.kind for n in _roots(graph)] == ["forever"]

    def test_mismatched_registration_is_not_consumed(self):
        extraction = _extract("def on_forever():\n    display.clear()\nbasic.forever(other)\n")
        assert len(extraction.unrecognized) == 1

    @pytest.mark.parametrize(
        "source, registration",
        [
            (
                "def on_button_pressed_a():\n    display.clear()\n",
                "input.on_button_pressed(Button.B, on_button_pressed_a)",
            ),
            (
                "def on_gesture_shake():\n    display.clear()\n",
                "input.on_gesture(Gesture.LOGO_UP, on_gesture_shake)",
            ),
        ],
    )
    def test_registration_binding_other_field_is_reported(self, source, registration):
        extraction = _extract(source + registration + "\n")
        assert [error.text for error in extraction.unrecognized] == [registration]
        assert registration not in generate_source(extraction.graph)

    def test_if_with_branches(self):
        graph = _extract("if True:\n    pass\nelif False:\n    display.clear()\nelse:\n    basic.pause(5)\n").graph
        (node,) = _roots(graph)
        assert node.mutation == {"elseif": 1, "else": 1}
        assert "DO0" not in node.inputs
        assert graph.child(node, "DO1").kind == "clear_screen"
        assert graph.child(node, "ELSE").fields["TIME"] == 5

    def test_contiguous_statements_chain(self):
        graph = _extract("display.clear()\nbasic.pause(10)\n\nbasic.pause(20)\n").graph
        first, second = _roots(graph)
        assert graph.child(first, "next").fields["TIME"] == 10
        assert second.fields["TIME"] == 20

    def test_every_interval_tail(self):
        graph = _extract(
            "def on_every_interval():\n"
            "    global n\n"
            "    n += 1\n"
            "    basic.pause(250)\n"
            "\n"
            "basic.forever(on_every_interval)\n"
        ).graph
        (hat,) = _roots(graph)
        assert graph.child(hat, "MS").fields["NUM"] == 250
        assert [n.kind for n in graph.chain(hat.inputs["DO"])] == ["math_change"]

    def test_async_forms_are_accepted(self):
        graph = _extract(
            "async def on_start():\n"
            "    await music.record_and_play([262, 294])\n"
            "\n"
            "await on_start()\n"
        ).graph
        (hat,) = _roots(graph)
        assert graph.child(hat, "DO").fields["RECORDER"] == "[262, 294]"

    def test_show_leds_matrix_is_normalized(self):
        graph = _extract('basic.show_leds("""\n# . . . #\n. # . # .\n. . # . .\n. # . # .\n# . . . #\n""")\n').graph
        (node,) = _roots(graph)
        assert node.fields["MATRIX"].split("\n")[0] == "#...#"

    def test_variables_share_ids(self):
        graph = _extract("total = 1\ntotal += total\n").graph
        first, second = graph.nodes_of_kind("variables_set")[0], graph.nodes_of_kind("math_change")[0]
        assert first.fields["VAR"] == second.fields["VAR"]
        assert graph.variable_name(first.fields["VAR"]) == "total"

    def test_loop_variable_is_a_reference(self):
        graph = _extract("for item in things:\n    pass\n").graph
        (loop,) = _roots(graph)
        assert loop.kind == "loops_for_of"
        assert graph.child(loop, "VAR").kind == "variables_get"
        assert graph.variable_name(graph.child(loop, "LIST").fields["VAR"]) == "things"


class TestUnrecognized:
    def test_one_foreign_line_is_isolated(self):
        extraction = _extract("basic.show_number(7)\nimport os\n")
        assert [n.kind for n in extraction.graph.nodes.values()] == ["show_number", "math_number"]
        assert len(extraction.unrecognized) == 1
        error = extraction.unrecognized[0]
        assert isinstance(error, UnrecognizedFragmentError)
        assert error.line == 2
        assert error.text == "import os"

    def test_foreign_block_is_swallowed_with_its_body(self):
        extraction = _extract("class Foo:\n    x = 1\n    y = 2\nbasic.pause(1)\n")
        assert len(extraction.unrecognized) == 1
        assert extraction.unrecognized[0].text == "class Foo:\n    x = 1\n    y = 2"
        assert [n.kind for n in _roots(extraction.graph)] == ["pause"]

    def test_simple_statement_with_block_is_rejected(self):
        extraction = _extract("display.clear()\n    basic.pause(1)\n")
        assert len(extraction.unrecognized) == 1
        assert "indented block" in extraction.unrecognized[0].reason

    def test_nested_foreign_value(self):
        extraction = _extract("basic.show_number(len(items))\n")
        (node,) = _roots(extraction.graph)
        assert node.kind == "show_number"
        assert "NUM" not in node.inputs
        assert extraction.unrecognized[0].text == "len(items)"

    def test_type_mismatch_is_unrecognized(self):
        extraction = _extract('basic.show_string(3)\n')
        assert len(extraction.unrecognized) == 1

    def test_keep_mode_preserves_text(self):
        source = "def on_forever():\n    print(1)\n    basic.show_number(abs(x))\nbasic.forever(on_forever)\n"
        extraction = _extract(source, keep_unrecognized=True)
        assert len(extraction.unrecognized) == 2
        assert generate_source(extraction.graph) == source
        kinds = {n.kind for n in extraction.graph.nodes.values()}
        assert {"opaque_statement", "opaque_expression"} <= kinds

    def test_strict_mode_raises_and_rolls_back(self):
        graph = Graph(REGISTRY)
        graph.new_node("clear_screen")
        with pytest.raises(UnrecognizedFragmentError, match=r"line 2"):
            Extractor(REGISTRY, strict=True).extract("basic.pause(1)\nimport os\n", graph)
        assert [n.kind for n in graph.nodes.values()] == ["clear_screen"]
