from __future__ import annotations

"""
Minimal program the extractor understands:

def on_button_pressed_a():
    basic.show_string("A")
input.on_button_pressed(Button.A, on_button_pressed_a)

def on_forever():
    for index in range(0, (4) + 1):
        led.plot(index, 0)
basic.forever(on_forever)

Usage:
python compiler.py program.py program.json
python compiler.py program.py program.json --keep-unrecognized
python compiler.py program.json program.py --indent 2 --check
"""

import argparse
import logging
from pathlib import Path

from blocks import REGISTRY
from codegen import DEFAULT_INDENT, generate_source, write_source
from extractor import Extraction, Extractor
from graph import Graph
from maintainer import LoopVariableMaintainer
from registry import BlockRegistry
from semantic import ensure_valid
from storage import load_graph, save_graph

logger = logging.getLogger(__name__)


def compile_graph(graph: Graph, indent: str = DEFAULT_INDENT) -> str:
    return generate_source(graph, indent=indent)


def extract_source(
    source_text: str,
    keep_unrecognized: bool = False,
    strict: bool = False,
    registry: BlockRegistry = REGISTRY,
) -> Extraction:
    graph = Graph(registry)
    LoopVariableMaintainer(graph).install()
    return Extractor(registry, keep_unrecognized=keep_unrecognized, strict=strict).extract(source_text, graph)


def compile_file(
    input_path: Path,
    output_path: Path,
    indent: str = DEFAULT_INDENT,
    keep_unrecognized: bool = False,
    strict: bool = False,
    check: bool = False,
) -> Extraction | None:
    """Convert between Python text and a stored block graph.

    A `.json` input is read as a stored graph and compiled to Python text;
    any other input is read as Python text and stored as a graph.
    """
    if input_path.suffix.lower() == ".json":
        graph = load_graph(input_path, REGISTRY)
        if check:
            _report(ensure_valid(graph))
        write_source(compile_graph(graph, indent=indent), output_path)
        return None

    extraction = extract_source(
        input_path.read_text(encoding="utf-8"),
        keep_unrecognized=keep_unrecognized,
        strict=strict,
    )
    if check:
        _report(ensure_valid(extraction.graph))
    save_graph(extraction.graph, output_path)
    return extraction


def _report(diagnostics) -> None:
    for diagnostic in diagnostics:
        logger.warning("%s", diagnostic)


def _build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Convert micro:bit Python to and from a stored block graph")
    parser.add_argument("input", type=Path, help="Path to a Python file, or to a .json block graph")
    parser.add_argument("output", type=Path, help="Path to the output .json graph or Python file")
    parser.add_argument("--indent", type=int, default=len(DEFAULT_INDENT), help="Spaces per indentation level.")
    parser.add_argument(
        "--keep-unrecognized",
        action="store_true",
        help="Keep lines that match no block as opaque blocks instead of dropping them.",
    )
    parser.add_argument("--strict", action="store_true", help="Fail on the first unrecognized fragment.")
    parser.add_argument("--check", action="store_true", help="Run semantic checks and fail on errors.")
    parser.add_argument("-v", "--verbose", action="count", default=0, help="Increase log verbosity.")
    return parser


def main() -> int:
    parser = _build_arg_parser()
    args = parser.parse_args()
    input_path: Path = args.input
    output_path: Path = args.output

    level = logging.WARNING
    if args.verbose == 1:
        level = logging.INFO
    elif args.verbose > 1:
        level = logging.DEBUG
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")

    if not input_path.exists() or not input_path.is_file():
        raise FileNotFoundError(f"Input file not found: '{input_path}'")
    if args.indent < 1:
        parser.error("--indent must be at least 1")

    compile_file(
        input_path=input_path,
        output_path=output_path,
        indent=" " * args.indent,
        keep_unrecognized=args.keep_unrecognized,
        strict=args.strict,
        check=args.check,
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
