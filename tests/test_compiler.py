"""Tests for the command line converter."""
import json
import sys

import pytest

import compiler
from compiler import compile_file, compile_graph, extract_source
from semantic import SemanticError

SOURCE = (
    "def on_start():\n"
    "    basic.show_number(light)\n"
    "\n"
    "on_start()\n"
)


class TestCompileFile:
    def test_text_to_graph_and_back(self, tmp_path):
        text_path = tmp_path / "program.py"
        text_path.write_text(SOURCE, encoding="utf-8")
        graph_path = tmp_path / "program.json"
        out_path = tmp_path / "out" / "program.py"

        extraction = compile_file(text_path, graph_path)
        assert extraction.unrecognized == []
        assert json.loads(graph_path.read_text(encoding="utf-8"))["version"] == 1

        assert compile_file(graph_path, out_path) is None
        assert out_path.read_text(encoding="utf-8") == SOURCE

    def test_indent_option(self, tmp_path):
        graph_path = tmp_path / "program.json"
        (tmp_path / "program.py").write_text(SOURCE, encoding="utf-8")
        compile_file(tmp_path / "program.py", graph_path)
        compile_file(graph_path, tmp_path / "two.py", indent="  ")
        assert (tmp_path / "two.py").read_text(encoding="utf-8").startswith("def on_start():\n  basic")

    def test_check_rejects_errors(self, tmp_path):
        path = tmp_path / "dup.py"
        handler = "def on_forever():\n    pass\nbasic.forever(on_forever)\n"
        path.write_text(handler + "\n" + handler, encoding="utf-8")
        with pytest.raises(SemanticError):
            compile_file(path, tmp_path / "dup.json", check=True)


class TestHelpers:
    def test_extract_source_installs_maintainer(self):
        graph = extract_source("for index in range(0, (3) + 1):\n    pass\n").graph
        (loop,) = [graph.nodes[r] for r in graph.roots]
        graph.detach(loop.inputs["VAR"])
        assert "VAR" in loop.inputs

    def test_compile_graph(self):
        graph = extract_source("display.clear()\n").graph
        assert compile_graph(graph) == "display.clear()\n"


class TestMain:
    def test_main_round_trip(self, tmp_path, monkeypatch):
        source = tmp_path / "in.py"
        source.write_text("display.clear()\nfoo()\n", encoding="utf-8")
        target = tmp_path / "out.json"
        monkeypatch.setattr(sys, "argv", ["compiler.py", str(source), str(target), "--keep-unrecognized"])
        assert compiler.main() == 0
        kinds = {block["kind"] for block in json.loads(target.read_text(encoding="utf-8"))["blocks"].values()}
        assert kinds == {"clear_screen", "opaque_statement"}

    def test_main_missing_input(self, tmp_path, monkeypatch):
        monkeypatch.setattr(sys, "argv", ["compiler.py", str(tmp_path / "nope.py"), str(tmp_path / "out.json")])
        with pytest.raises(FileNotFoundError):
            compiler.main()
