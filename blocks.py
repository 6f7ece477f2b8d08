from __future__ import annotations

from typing import Any, Mapping

from codegen import (
    ORDER_ADDITIVE,
    ORDER_ATOMIC,
    ORDER_EXPONENTIATION,
    ORDER_FUNCTION_CALL,
    ORDER_LOGICAL_AND,
    ORDER_LOGICAL_NOT,
    ORDER_LOGICAL_OR,
    ORDER_MULTIPLICATIVE,
    ORDER_NONE,
    ORDER_RELATIONAL,
    ORDER_UNARY_SIGN,
    SourceBuilder,
)
from graph import Node
from lexer import decode_string_literal
from registry import (
    FIELD,
    STATEMENT,
    VALUE,
    BlockKind,
    BlockRegistry,
    CallPattern,
    Clause,
    OperatorPattern,
    ParameterSet,
    RegexPattern,
    Slot,
)

NUMBER = ("Number",)
STRING = ("String",)
BOOLEAN = ("Boolean",)
VARIABLE = ("Variable",)
ANY: tuple[str, ...] = ()

NAME = r"[A-Za-z_]\w*"
HANDLER = r"(?P<HANDLER>[A-Za-z_]\w*)"
DECIMAL = r"\d+(?:\.\d+)?"

# Blocks whose code awaits; a handler containing one becomes `async def`.
ASYNC_KINDS = frozenset({"music_record_and_play"})

# Kinds that only make sense inside an event handler body.
EVENT_CONTAINERS = frozenset(
    {
        "forever",
        "on_start",
        "on_button_pressed",
        "on_gesture",
        "on_logo_pressed",
        "on_logo_released",
        "loops_every_interval",
    }
)

BUTTONS = ("A", "B", "AB")
GESTURES = (
    "SHAKE",
    "LOGO_UP",
    "LOGO_DOWN",
    "SCREEN_UP",
    "SCREEN_DOWN",
    "TILT_LEFT",
    "TILT_RIGHT",
    "FREE_FALL",
    "THREE_G",
    "SIX_G",
    "EIGHT_G",
)
ICONS = ("HEART", "SMALL_HEART", "HAPPY", "SAD", "YES", "NO")
PINS = ("P0", "P1", "P2")
BEATS = ("1", "0.5", "0.25", "0.125", "2", "4")
EMPTY_MATRIX = "\n".join(["....."] * 5)


def _arg(name: str) -> str:
    return rf"(?P<{name}>.+)"


def _statement(tag: str, category: str, **kwargs: Any) -> BlockKind:
    return BlockKind(tag=tag, category=category, previous=True, next=True, **kwargs)


def _hat(tag: str, category: str, **kwargs: Any) -> BlockKind:
    return BlockKind(tag=tag, category=category, hat=True, body="DO", **kwargs)


def _number_input(name: str, placeholder: str = "0", default: Any = 0) -> Slot:
    return Slot(name, VALUE, NUMBER, default=default, placeholder=placeholder, default_child=("math_number", default))


def _choice(name: str, options: tuple[str, ...]):
    """Extractor for a single case-insensitive dropdown capture."""

    def extract(captures: Mapping[str, str]) -> ParameterSet | None:
        value = captures.get(name, "").upper()
        if value not in options:
            return None
        return ParameterSet(fields={name: value})

    return extract


def _handler(node: Node, builder: SourceBuilder, registration: str) -> str:
    kind = builder.graph.kind_of(node)
    name = kind.procedure_name(node.fields)
    prefix = "async " if builder.contains(node, ASYNC_KINDS) else ""
    return f"{prefix}def {name}():\n{builder.statement_to_code(node, 'DO')}{registration}"


# Basic


def _normalize_matrix(raw: str) -> str:
    rows = [row for row in raw.replace("\r", "").split("\n") if row.strip()]
    out = []
    for y in range(5):
        line = rows[y] if y < len(rows) else ""
        markers = [ch for ch in line if ch in "#."][:5]
        markers.extend("." * (5 - len(markers)))
        out.append("".join(markers))
    return "\n".join(out)


def _show_leds(node: Node, builder: SourceBuilder) -> str:
    matrix = _normalize_matrix(str(builder.field(node, "MATRIX", EMPTY_MATRIX)))
    body = "\n".join(" ".join(row) for row in matrix.split("\n"))
    return f'basic.show_leds("""\n{body}\n""")\n'


def _on_start(node: Node, builder: SourceBuilder) -> str:
    awaited = "await " if builder.contains(node, ASYNC_KINDS) else ""
    return _handler(node, builder, f"\n{awaited}on_start()\n")


BASIC_BLOCKS = (
    _statement(
        "clear_screen",
        "Basic",
        pattern=CallPattern("display.clear"),
        generator=lambda node, b: "display.clear()\n",
        tooltip="Clear all LEDs on the micro:bit display",
    ),
    _statement(
        "show_string",
        "Basic",
        slots=(Slot("TEXT", VALUE, STRING, default="Hello!", placeholder='""', default_child=("text", "Hello!")),),
        pattern=CallPattern("basic.show_string", _arg("TEXT")),
        generator=lambda node, b: f"basic.show_string({b.value_to_code(node, 'TEXT')})\n",
        tooltip="Show a string on the display",
    ),
    _statement(
        "show_number",
        "Basic",
        slots=(_number_input("NUM"),),
        pattern=CallPattern("basic.show_number", _arg("NUM")),
        generator=lambda node, b: f"basic.show_number({b.value_to_code(node, 'NUM')})\n",
        tooltip="Show a number on the display",
    ),
    _statement(
        "basic_show_leds",
        "Basic",
        slots=(Slot("MATRIX", FIELD, default=EMPTY_MATRIX),),
        pattern=RegexPattern(r'(?:await\s+)?basic\.show_leds\(\s*(?:"""|\'\'\')(?P<MATRIX>.*?)(?:"""|\'\'\')\s*\)'),
        extractor=lambda c: ParameterSet(fields={"MATRIX": _normalize_matrix(c.get("MATRIX", ""))}),
        generator=_show_leds,
        tooltip="Draw a 5x5 image and show it on the LED screen",
    ),
    _statement(
        "pause",
        "Basic",
        slots=(Slot("TIME", FIELD, default=100),),
        pattern=CallPattern("basic.pause", rf"(?P<TIME>{DECIMAL})"),
        generator=lambda node, b: f"basic.pause({b.fmt(b.field(node, 'TIME'))})\n",
        tooltip="Pause execution",
    ),
    _statement(
        "show_icon",
        "Basic",
        slots=(Slot("ICON", FIELD, default="HEART", options=ICONS),),
        pattern=CallPattern("display.show", r"Image\.(?P<ICON>[A-Z_]+)"),
        generator=lambda node, b: f"display.show(Image.{str(b.field(node, 'ICON')).upper()})\n",
        tooltip="Show a predefined icon on the LED matrix",
    ),
    _hat(
        "forever",
        "Basic",
        slots=(Slot("DO", STATEMENT),),
        pattern=RegexPattern(r"(?:async\s+)?def\s+on_forever\s*\(\s*\)\s*:"),
        trailer=RegexPattern(rf"basic\.forever\(\s*{HANDLER}\s*\)"),
        procedure_name=lambda fields: "on_forever",
        generator=lambda node, b: _handler(node, b, "basic.forever(on_forever)\n"),
        tooltip="Runs code forever",
    ),
    _hat(
        "on_start",
        "Basic",
        slots=(Slot("DO", STATEMENT),),
        pattern=RegexPattern(r"(?:async\s+)?def\s+on_start\s*\(\s*\)\s*:"),
        trailer=RegexPattern(r"(?:await\s+)?(?P<HANDLER>on_start)\s*\(\s*\)"),
        procedure_name=lambda fields: "on_start",
        generator=_on_start,
        tooltip="Runs once at the start",
    ),
)


# Input


def _button_handler_name(fields: Mapping[str, Any]) -> str:
    return f"on_button_pressed_{str(fields.get('BUTTON') or 'A').lower()}"


def _gesture_handler_name(fields: Mapping[str, Any]) -> str:
    return f"on_gesture_{str(fields.get('GESTURE') or 'SHAKE').lower()}"


def _on_button_pressed(node: Node, builder: SourceBuilder) -> str:
    name = _button_handler_name(node.fields)
    button = builder.field(node, "BUTTON")
    return _handler(node, builder, f"input.on_button_pressed(Button.{button}, {name})\n")


def _on_gesture(node: Node, builder: SourceBuilder) -> str:
    name = _gesture_handler_name(node.fields)
    gesture = builder.field(node, "GESTURE")
    return _handler(node, builder, f"input.on_gesture(Gesture.{gesture}, {name})\n")


INPUT_BLOCKS = (
    _hat(
        "on_button_pressed",
        "Input",
        slots=(Slot("BUTTON", FIELD, default="A", options=BUTTONS), Slot("DO", STATEMENT)),
        pattern=RegexPattern(r"(?:async\s+)?def\s+on_button_pressed_(?P<BUTTON>[A-Za-z]+)\s*\(\s*\)\s*:"),
        extractor=_choice("BUTTON", BUTTONS),
        trailer=RegexPattern(rf"input\.on_button_pressed\(\s*Button\.(?P<BUTTON>A|B|AB)\s*,\s*{HANDLER}\s*\)"),
        procedure_name=_button_handler_name,
        generator=_on_button_pressed,
        tooltip="Run the attached code when a button is pressed",
    ),
    BlockKind(
        "button_is_pressed",
        "Input",
        slots=(Slot("BUTTON", FIELD, default="A", options=BUTTONS),),
        output=BOOLEAN,
        pattern=CallPattern("input.button_is_pressed", r"Button\.(?P<BUTTON>A|B|AB)", awaitable=False),
        generator=lambda node, b: (f"input.button_is_pressed(Button.{b.field(node, 'BUTTON')})", ORDER_FUNCTION_CALL),
        tooltip="Check whether a button is pressed right now",
    ),
    _hat(
        "on_gesture",
        "Input",
        slots=(Slot("GESTURE", FIELD, default="SHAKE", options=GESTURES), Slot("DO", STATEMENT)),
        pattern=RegexPattern(r"(?:async\s+)?def\s+on_gesture_(?P<GESTURE>[A-Za-z0-9_]+)\s*\(\s*\)\s*:"),
        extractor=_choice("GESTURE", GESTURES),
        trailer=RegexPattern(rf"input\.on_gesture\(\s*Gesture\.(?P<GESTURE>[A-Z0-9_]+)\s*,\s*{HANDLER}\s*\)"),
        procedure_name=_gesture_handler_name,
        generator=_on_gesture,
        tooltip="Run when a gesture is detected",
    ),
    BlockKind(
        "is_gesture",
        "Input",
        slots=(Slot("GESTURE", FIELD, default="SHAKE", options=GESTURES),),
        output=BOOLEAN,
        pattern=CallPattern("input.is_gesture", r"Gesture\.(?P<GESTURE>[A-Z0-9_]+)", awaitable=False),
        generator=lambda node, b: (f"input.is_gesture(Gesture.{b.field(node, 'GESTURE')})", ORDER_FUNCTION_CALL),
        tooltip="Check whether a gesture is currently active",
    ),
    _hat(
        "on_logo_pressed",
        "Input",
        slots=(Slot("DO", STATEMENT),),
        pattern=RegexPattern(r"(?:async\s+)?def\s+on_logo_pressed\s*\(\s*\)\s*:"),
        trailer=RegexPattern(rf"input\.on_logo_pressed\(\s*{HANDLER}\s*\)"),
        procedure_name=lambda fields: "on_logo_pressed",
        generator=lambda node, b: _handler(node, b, "input.on_logo_pressed(on_logo_pressed)\n"),
        tooltip="Run when the logo is pressed",
    ),
    _hat(
        "on_logo_released",
        "Input",
        slots=(Slot("DO", STATEMENT),),
        pattern=RegexPattern(r"(?:async\s+)?def\s+on_logo_released\s*\(\s*\)\s*:"),
        trailer=RegexPattern(rf"input\.on_logo_released\(\s*{HANDLER}\s*\)"),
        procedure_name=lambda fields: "on_logo_released",
        generator=lambda node, b: _handler(node, b, "input.on_logo_released(on_logo_released)\n"),
        tooltip="Run when the logo is released",
    ),
    BlockKind(
        "logo_is_pressed",
        "Input",
        output=BOOLEAN,
        pattern=CallPattern("input.logo_is_pressed", awaitable=False),
        generator=lambda node, b: ("input.logo_is_pressed()", ORDER_FUNCTION_CALL),
        tooltip="Check whether the logo is pressed",
    ),
    BlockKind(
        "light_level",
        "Input",
        output=NUMBER,
        pattern=CallPattern("input.light_level", awaitable=False),
        generator=lambda node, b: ("input.light_level()", ORDER_FUNCTION_CALL),
        tooltip="Get the current ambient light level (0-255)",
    ),
    BlockKind(
        "temperature",
        "Input",
        output=NUMBER,
        pattern=RegexPattern(r"(?:input|basic)\.temperature\(\s*\)"),
        generator=lambda node, b: ("input.temperature()", ORDER_FUNCTION_CALL),
        tooltip="Get the temperature in degrees Celsius",
    ),
)


# Loops


def _repeat(node: Node, b: SourceBuilder) -> str:
    return f"for _ in range({b.value_to_code(node, 'TIMES')}):\n{b.statement_to_code(node, 'DO')}"


def _while(node: Node, b: SourceBuilder) -> str:
    return f"while {b.value_to_code(node, 'COND')}:\n{b.statement_to_code(node, 'DO')}"


def _for_range(node: Node, b: SourceBuilder) -> str:
    var = b.value_to_code(node, "VAR")
    to = b.value_to_code(node, "TO")
    return f"for {var} in range(0, ({to}) + 1):\n{b.statement_to_code(node, 'DO')}"


def _for_of(node: Node, b: SourceBuilder) -> str:
    var = b.value_to_code(node, "VAR")
    return f"for {var} in {b.value_to_code(node, 'LIST')}:\n{b.statement_to_code(node, 'DO')}"


def _every_interval(node: Node, b: SourceBuilder) -> str:
    prefix = "async " if b.contains(node, ASYNC_KINDS) else ""
    names = b.variables_used(node, "DO")
    globals_line = f"{b.indent}global {', '.join(names)}\n" if names else ""
    pause = f"{b.indent}basic.pause({b.value_to_code(node, 'MS')})\n"
    return (
        f"{prefix}def on_every_interval():\n"
        f"{globals_line}{b.statement_to_code(node, 'DO')}{pause}"
        "\nbasic.forever(on_every_interval)\n"
    )


LOOPS_BLOCKS = (
    _statement(
        "loops_repeat",
        "Loops",
        slots=(_number_input("TIMES", default=4), Slot("DO", STATEMENT)),
        body="DO",
        pattern=RegexPattern(r"for\s+_\s+in\s+range\(\s*(?P<TIMES>.+?)\s*\)\s*:"),
        specificity=10,
        generator=_repeat,
        tooltip="Repeat the enclosed statements a number of times",
    ),
    _statement(
        "loops_while",
        "Loops",
        slots=(
            Slot("COND", VALUE, BOOLEAN, default="TRUE", placeholder="True", default_child=("logic_boolean", "TRUE")),
            Slot("DO", STATEMENT),
        ),
        body="DO",
        pattern=RegexPattern(r"while\s+(?P<COND>.+?)\s*:"),
        generator=_while,
        tooltip="Repeat while a condition is true",
    ),
    _statement(
        "loops_for_range",
        "Loops",
        slots=(
            Slot("VAR", VALUE, VARIABLE, default="index", placeholder="index", default_child=("variables_get", "index")),
            _number_input("TO", default=4),
            Slot("DO", STATEMENT),
        ),
        body="DO",
        pattern=RegexPattern(rf"for\s+(?P<VAR>{NAME})\s+in\s+range\(\s*0\s*,\s*\((?P<TO>.+)\)\s*\+\s*1\s*\)\s*:"),
        specificity=20,
        generator=_for_range,
        tooltip="Count from 0 up to a number, inclusive",
    ),
    _statement(
        "loops_for_of",
        "Loops",
        slots=(
            Slot("VAR", VALUE, VARIABLE, default="value", placeholder="value", default_child=("variables_get", "value")),
            Slot("LIST", VALUE, ("Array", "Variable"), default="list", placeholder="list", default_child=("variables_get", "list")),
            Slot("DO", STATEMENT),
        ),
        body="DO",
        pattern=RegexPattern(rf"for\s+(?P<VAR>{NAME})\s+in\s+(?P<LIST>.+?)\s*:"),
        generator=_for_of,
        tooltip="Run the enclosed statements for each item of a list",
    ),
    _hat(
        "loops_every_interval",
        "Loops",
        slots=(_number_input("MS", placeholder="500", default=500), Slot("DO", STATEMENT)),
        pattern=RegexPattern(r"(?:async\s+)?def\s+on_every_interval\s*\(\s*\)\s*:"),
        tail=RegexPattern(r"basic\.pause\((?P<MS>.+)\)"),
        trailer=RegexPattern(rf"basic\.forever\(\s*{HANDLER}\s*\)"),
        procedure_name=lambda fields: "on_every_interval",
        generator=_every_interval,
        tooltip="Run the enclosed statements repeatedly, pausing between runs",
    ),
    _statement(
        "loops_break",
        "Loops",
        pattern=RegexPattern(r"break"),
        generator=lambda node, b: "break\n",
        tooltip="Break out of the enclosing loop",
    ),
    _statement(
        "loops_continue",
        "Loops",
        pattern=RegexPattern(r"continue"),
        generator=lambda node, b: "continue\n",
        tooltip="Skip to the next iteration of the enclosing loop",
    ),
)


# Led


def _xy(node: Node, b: SourceBuilder) -> str:
    return f"{b.value_to_code(node, 'X')}, {b.value_to_code(node, 'Y')}"


XY_SLOTS = (_number_input("X"), _number_input("Y"))

LED_BLOCKS = (
    _statement(
        "plot_led",
        "Led",
        slots=XY_SLOTS,
        pattern=CallPattern("led.plot", _arg("X"), _arg("Y")),
        generator=lambda node, b: f"led.plot({_xy(node, b)})\n",
        tooltip="Turn on LED at (x, y)",
    ),
    _statement(
        "unplot_led",
        "Led",
        slots=XY_SLOTS,
        pattern=CallPattern("led.unplot", _arg("X"), _arg("Y")),
        generator=lambda node, b: f"led.unplot({_xy(node, b)})\n",
        tooltip="Turn off LED at (x, y)",
    ),
    _statement(
        "plot_led_brightness",
        "Led",
        slots=XY_SLOTS + (Slot("BRIGHTNESS", FIELD, default=255),),
        pattern=CallPattern("led.plot_brightness", _arg("X"), _arg("Y"), rf"(?P<BRIGHTNESS>{DECIMAL})"),
        generator=lambda node, b: f"led.plot_brightness({_xy(node, b)}, {b.fmt(b.field(node, 'BRIGHTNESS'))})\n",
        tooltip="Plot an LED at (x, y) with brightness 0-255",
    ),
    _statement(
        "toggle_led",
        "Led",
        slots=XY_SLOTS,
        pattern=CallPattern("led.toggle", _arg("X"), _arg("Y")),
        generator=lambda node, b: f"led.toggle({_xy(node, b)})\n",
        tooltip="Toggle LED at (x, y)",
    ),
    BlockKind(
        "point_led",
        "Led",
        slots=XY_SLOTS,
        output=BOOLEAN,
        pattern=CallPattern("led.point", _arg("X"), _arg("Y"), awaitable=False),
        generator=lambda node, b: (f"led.point({_xy(node, b)})", ORDER_FUNCTION_CALL),
        tooltip="Check whether the LED at (x, y) is on",
    ),
)


# Logic


def _if_shape(mutation: Mapping[str, int]) -> tuple[Slot, ...]:
    slots = [
        Slot("IF0", VALUE, BOOLEAN, default="TRUE", placeholder="True", default_child=("logic_boolean", "TRUE")),
        Slot("DO0", STATEMENT),
    ]
    for n in range(1, int(mutation.get("elseif", 0)) + 1):
        slots.append(Slot(f"IF{n}", VALUE, BOOLEAN, default="FALSE", placeholder="False", default_child=("logic_boolean", "FALSE")))
        slots.append(Slot(f"DO{n}", STATEMENT))
    if mutation.get("else"):
        slots.append(Slot("ELSE", STATEMENT))
    return tuple(slots)


def _if_continuation(params: ParameterSet, clause: str, captures: Mapping[str, str]) -> str:
    if clause == "elif":
        n = params.mutation.get("elseif", 0) + 1
        params.mutation["elseif"] = n
        params.values[f"IF{n}"] = captures["COND"].strip()
        return f"DO{n}"
    params.mutation["else"] = 1
    return "ELSE"


def _controls_if(node: Node, b: SourceBuilder) -> str:
    code = f"if {b.value_to_code(node, 'IF0')}:\n{b.statement_to_code(node, 'DO0')}"
    for n in range(1, int(node.mutation.get("elseif", 0)) + 1):
        code += f"elif {b.value_to_code(node, f'IF{n}')}:\n{b.statement_to_code(node, f'DO{n}')}"
    if node.mutation.get("else"):
        code += f"else:\n{b.statement_to_code(node, 'ELSE')}"
    return code


COMPARE_OPERATORS = {"EQ": "==", "NEQ": "!=", "LT": "<", "LTE": "<=", "GT": ">", "GTE": ">="}
COMPARE_SYMBOLS = {symbol: op for op, symbol in COMPARE_OPERATORS.items()}


def _binary_params(symbols: Mapping[str, str]):
    def extract(captures: Mapping[str, str]) -> ParameterSet | None:
        op = symbols.get(captures.get("OP", ""))
        if op is None:
            return None
        return ParameterSet(fields={"OP": op}, values={"A": captures["A"], "B": captures["B"]})

    return extract


def _compare(node: Node, b: SourceBuilder) -> tuple[str, int]:
    op = COMPARE_OPERATORS.get(str(b.field(node, "OP")), "==")
    a = b.value_to_code(node, "A", ORDER_RELATIONAL, strict=True)
    right = b.value_to_code(node, "B", ORDER_RELATIONAL, strict=True)
    return f"{a} {op} {right}", ORDER_RELATIONAL


def _operation(node: Node, b: SourceBuilder) -> tuple[str, int]:
    op = "and" if b.field(node, "OP") == "AND" else "or"
    order = ORDER_LOGICAL_AND if op == "and" else ORDER_LOGICAL_OR
    return f"{b.value_to_code(node, 'A', order)} {op} {b.value_to_code(node, 'B', order)}", order


def _negate(node: Node, b: SourceBuilder) -> tuple[str, int]:
    return f"not {b.value_to_code(node, 'BOOL', ORDER_LOGICAL_NOT)}", ORDER_LOGICAL_NOT


LOGIC_BLOCKS = (
    _statement(
        "controls_if",
        "Logic",
        slots=_if_shape({}),
        shape=_if_shape,
        body="DO0",
        pattern=RegexPattern(r"if\s+(?P<IF0>.+?)\s*:"),
        clauses=(
            Clause("elif", RegexPattern(r"elif\s+(?P<COND>.+?)\s*:"), repeat=True),
            Clause("else", RegexPattern(r"else\s*:")),
        ),
        continuation=_if_continuation,
        generator=_controls_if,
        tooltip="If / else if / else",
    ),
    BlockKind(
        "logic_compare",
        "Logic",
        slots=(
            Slot("OP", FIELD, default="EQ", options=tuple(COMPARE_OPERATORS)),
            Slot("A", VALUE, placeholder="0", default_child=("math_number", 0)),
            Slot("B", VALUE, placeholder="0", default_child=("math_number", 0)),
        ),
        output=BOOLEAN,
        pattern=OperatorPattern([(COMPARE_SYMBOLS, False)]),
        extractor=_binary_params(COMPARE_SYMBOLS),
        specificity=70,
        generator=_compare,
        tooltip="Compare two values",
    ),
    BlockKind(
        "logic_operation",
        "Logic",
        slots=(
            Slot("OP", FIELD, default="AND", options=("AND", "OR")),
            Slot("A", VALUE, BOOLEAN, placeholder="False"),
            Slot("B", VALUE, BOOLEAN, placeholder="False"),
        ),
        output=BOOLEAN,
        pattern=OperatorPattern([(("or",), False), (("and",), False)]),
        extractor=_binary_params({"and": "AND", "or": "OR"}),
        specificity=90,
        generator=_operation,
        tooltip="Combine two conditions",
    ),
    BlockKind(
        "logic_negate",
        "Logic",
        slots=(Slot("BOOL", VALUE, BOOLEAN, placeholder="False"),),
        output=BOOLEAN,
        pattern=RegexPattern(r"not(?:\s+|(?=\())(?P<BOOL>.+)"),
        specificity=80,
        generator=_negate,
        tooltip="Negate a condition",
    ),
    BlockKind(
        "logic_boolean",
        "Logic",
        slots=(Slot("BOOL", FIELD, default="TRUE", options=("TRUE", "FALSE")),),
        output=BOOLEAN,
        pattern=RegexPattern(r"(?P<BOOL>True|False)"),
        extractor=lambda c: ParameterSet(fields={"BOOL": c["BOOL"].upper()}),
        generator=lambda node, b: ("True" if b.field(node, "BOOL") == "TRUE" else "False", ORDER_ATOMIC),
        tooltip="Boolean value",
    ),
)


# Variables and text


def _variables_get(node: Node, b: SourceBuilder) -> tuple[str, int]:
    return b.variable_name(node), ORDER_ATOMIC


VARIABLE_BLOCKS = (
    BlockKind(
        "variables_get",
        "Variables",
        slots=(Slot("VAR", FIELD, variable=True),),
        output=ANY,
        pattern=RegexPattern(rf"(?P<VAR>{NAME})"),
        specificity=-10,
        generator=_variables_get,
        tooltip="Read a variable",
    ),
    _statement(
        "variables_set",
        "Variables",
        slots=(Slot("VAR", FIELD, variable=True), Slot("VALUE", VALUE, placeholder="0", default_child=("math_number", 0))),
        pattern=RegexPattern(rf"(?P<VAR>{NAME})\s*=(?!=)\s*(?P<VALUE>.+)"),
        generator=lambda node, b: f"{b.variable_name(node)} = {b.value_to_code(node, 'VALUE')}\n",
        tooltip="Set a variable",
    ),
    _statement(
        "math_change",
        "Variables",
        slots=(Slot("VAR", FIELD, variable=True), Slot("DELTA", VALUE, NUMBER, placeholder="1", default_child=("math_number", 1))),
        pattern=RegexPattern(rf"(?P<VAR>{NAME})\s*\+=\s*(?P<DELTA>.+)"),
        specificity=5,
        generator=lambda node, b: f"{b.variable_name(node)} += {b.value_to_code(node, 'DELTA')}\n",
        tooltip="Change a variable by an amount",
    ),
)

STRING_LITERAL = r"\"(?:[^\"\\\n]|\\.)*\"|'(?:[^'\\\n]|\\.)*'"

TEXT_BLOCKS = (
    BlockKind(
        "text",
        "Text",
        slots=(Slot("TEXT", FIELD, default=""),),
        output=STRING,
        pattern=RegexPattern(rf"(?P<TEXT>{STRING_LITERAL})"),
        extractor=lambda c: ParameterSet(fields={"TEXT": decode_string_literal(c["TEXT"])}),
        generator=lambda node, b: (b.string(node.fields.get("TEXT", "")), ORDER_ATOMIC),
        tooltip="A piece of text",
    ),
)


# Maths


def _math_number(node: Node, b: SourceBuilder) -> tuple[str, int]:
    value = b.field(node, "NUM", 0)
    order = ORDER_UNARY_SIGN if isinstance(value, (int, float)) and value < 0 else ORDER_ATOMIC
    return b.fmt(value), order


ARITHMETIC_OPERATORS = {
    "ADD": ("+", ORDER_ADDITIVE),
    "MINUS": ("-", ORDER_ADDITIVE),
    "MULTIPLY": ("*", ORDER_MULTIPLICATIVE),
    "DIVIDE": ("/", ORDER_MULTIPLICATIVE),
    "POWER": ("**", ORDER_EXPONENTIATION),
}
ARITHMETIC_SYMBOLS = {symbol: op for op, (symbol, _) in ARITHMETIC_OPERATORS.items()}


def _arithmetic(node: Node, b: SourceBuilder) -> tuple[str, int]:
    symbol, order = ARITHMETIC_OPERATORS.get(str(b.field(node, "OP")), ARITHMETIC_OPERATORS["ADD"])
    # ** groups to the right, the others to the left.
    right_assoc = symbol == "**"
    a = b.value_to_code(node, "A", order, strict=right_assoc)
    right = b.value_to_code(node, "B", order, strict=not right_assoc)
    return f"{a} {symbol} {right}", order


MATHS_BLOCKS = (
    BlockKind(
        "math_number",
        "Maths",
        slots=(Slot("NUM", FIELD, default=0),),
        output=NUMBER,
        pattern=RegexPattern(rf"(?P<NUM>-?{DECIMAL})"),
        generator=_math_number,
        tooltip="A number",
    ),
    BlockKind(
        "math_arithmetic",
        "Maths",
        slots=(
            Slot("OP", FIELD, default="ADD", options=tuple(ARITHMETIC_OPERATORS)),
            _number_input("A"),
            _number_input("B"),
        ),
        output=NUMBER,
        pattern=OperatorPattern([(("+", "-"), False), (("*", "/"), False), (("**",), True)]),
        extractor=_binary_params(ARITHMETIC_SYMBOLS),
        specificity=60,
        generator=_arithmetic,
        tooltip="Arithmetic on two numbers",
    ),
    BlockKind(
        "math_random_int",
        "Maths",
        slots=(_number_input("FROM"), _number_input("TO", placeholder="10", default=10)),
        output=NUMBER,
        pattern=CallPattern("random.randint", _arg("FROM"), _arg("TO"), awaitable=False),
        generator=lambda node, b: (
            f"random.randint({b.value_to_code(node, 'FROM')}, {b.value_to_code(node, 'TO')})",
            ORDER_FUNCTION_CALL,
        ),
        tooltip="Return a random integer between the two values (inclusive)",
    ),
)


# Music


def _play_tone(node: Node, b: SourceBuilder) -> str:
    note = b.fmt(b.field(node, "NOTE"))
    if b.field(node, "MODE") == "loop":
        return f"music.ring_tone({note})\n"
    return f"music.play_tone({note}, {b.field(node, 'DURATION')})\n"


MUSIC_BLOCKS = (
    _statement(
        "music_play_tone",
        "Music",
        slots=(
            Slot("NOTE", FIELD, default=262),
            Slot("DURATION", FIELD, default="1", options=BEATS),
            Slot("MODE", FIELD, default="until_done", options=("until_done", "background", "loop")),
        ),
        pattern=CallPattern("music.play_tone", rf"(?P<NOTE>{DECIMAL})", rf"(?P<DURATION>{DECIMAL})"),
        generator=_play_tone,
        tooltip="Play a tone with given pitch and duration",
    ),
    _statement(
        "music_ring_tone",
        "Music",
        slots=(Slot("FREQ", FIELD, default=262),),
        pattern=CallPattern("music.ring_tone", rf"(?P<FREQ>{DECIMAL})"),
        generator=lambda node, b: f"music.ring_tone({b.fmt(b.field(node, 'FREQ'))})\n",
        tooltip="Ring a tone continuously",
    ),
    _statement(
        "music_rest",
        "Music",
        slots=(Slot("DURATION", FIELD, default="1", options=BEATS),),
        pattern=CallPattern("music.rest", rf"(?P<DURATION>{DECIMAL})"),
        generator=lambda node, b: f"music.rest({b.field(node, 'DURATION')})\n",
        tooltip="Pause sound for a specified duration",
    ),
    _statement(
        "music_record_and_play",
        "Music",
        slots=(Slot("RECORDER", FIELD, default="[]"),),
        pattern=RegexPattern(r"(?:await\s+)?music\.record_and_play\((?P<RECORDER>.*)\)"),
        generator=lambda node, b: f"await music.record_and_play({b.field(node, 'RECORDER')})\n",
        tooltip="Record a sequence of notes and play them back",
    ),
)


# Pins


def _pin_field() -> Slot:
    return Slot("PIN", FIELD, default="P0", options=PINS)


PINS_BLOCKS = (
    BlockKind(
        "pins_digital_read_pin",
        "Pins",
        slots=(_pin_field(),),
        output=NUMBER,
        pattern=CallPattern("pins.digital_read_pin", r"DigitalPin\.(?P<PIN>P[0-9]+)", awaitable=False),
        generator=lambda node, b: (f"pins.digital_read_pin(DigitalPin.{b.field(node, 'PIN')})", ORDER_FUNCTION_CALL),
        tooltip="Read a digital value (0 or 1) from a pin",
    ),
    _statement(
        "pins_digital_write_pin",
        "Pins",
        slots=(_pin_field(), _number_input("VALUE")),
        pattern=CallPattern("pins.digital_write_pin", r"DigitalPin\.(?P<PIN>P[0-9]+)", _arg("VALUE")),
        generator=lambda node, b: f"pins.digital_write_pin(DigitalPin.{b.field(node, 'PIN')}, {b.value_to_code(node, 'VALUE')})\n",
        tooltip="Write a digital value (0 or 1) to a pin",
    ),
    BlockKind(
        "pins_read_analog_pin",
        "Pins",
        slots=(_pin_field(),),
        output=NUMBER,
        pattern=CallPattern("pins.read_analog_pin", r"AnalogPin\.(?P<PIN>P[0-9]+)", awaitable=False),
        generator=lambda node, b: (f"pins.read_analog_pin(AnalogPin.{b.field(node, 'PIN')})", ORDER_FUNCTION_CALL),
        tooltip="Read an analog value (0-1023) from a pin",
    ),
    _statement(
        "pins_analog_write_pin",
        "Pins",
        slots=(_pin_field(), _number_input("VALUE", default=1023)),
        pattern=CallPattern("pins.analog_write_pin", r"AnalogPin\.(?P<PIN>P[0-9]+)", _arg("VALUE")),
        generator=lambda node, b: f"pins.analog_write_pin(AnalogPin.{b.field(node, 'PIN')}, {b.value_to_code(node, 'VALUE')})\n",
        tooltip="Write an analog value (0-1023) to a pin",
    ),
)


# Fragments the extractor could not interpret, kept verbatim.

OPAQUE_BLOCKS = (
    _statement(
        "opaque_statement",
        "Basic",
        slots=(Slot("CODE", FIELD, default=""),),
        generator=lambda node, b: str(node.fields.get("CODE", "")).rstrip("\n") + "\n",
        toolbox=False,
    ),
    BlockKind(
        "opaque_expression",
        "Basic",
        slots=(Slot("CODE", FIELD, default=""),),
        output=ANY,
        generator=lambda node, b: (str(node.fields.get("CODE", "")) or "None", ORDER_NONE),
        toolbox=False,
    ),
)


ALL_BLOCKS = (
    BASIC_BLOCKS
    + INPUT_BLOCKS
    + LOOPS_BLOCKS
    + LED_BLOCKS
    + LOGIC_BLOCKS
    + VARIABLE_BLOCKS
    + TEXT_BLOCKS
    + MATHS_BLOCKS
    + MUSIC_BLOCKS
    + PINS_BLOCKS
    + OPAQUE_BLOCKS
)


def build_registry() -> BlockRegistry:
    registry = BlockRegistry()
    for kind in ALL_BLOCKS:
        registry.register(kind)
    return registry


REGISTRY = build_registry()
REGISTRY.seal()
