from __future__ import annotations

import textwrap
from dataclasses import dataclass


class LexerError(ValueError):
    """Raised when tokenization fails."""


@dataclass(frozen=True)
class Token:
    type: str
    value: str
    line: int
    column: int
    start: int
    end: int


@dataclass(frozen=True)
class SourceLine:
    """One logical line of source, with bracketed continuations joined."""

    text: str
    indent: int
    line: int
    end_line: int
    blank_before: bool
    raw: str


KEYWORDS = {
    "and",
    "async",
    "await",
    "break",
    "continue",
    "def",
    "elif",
    "else",
    "for",
    "global",
    "if",
    "in",
    "is",
    "not",
    "or",
    "pass",
    "return",
    "while",
    "True",
    "False",
    "None",
}


SYMBOLS = {
    "(": "LPAREN",
    ")": "RPAREN",
    "[": "LBRACKET",
    "]": "RBRACKET",
    "{": "LBRACE",
    "}": "RBRACE",
    ",": "COMMA",
    ":": "COLON",
    ".": "DOT",
    ";": "SEMI",
}

OPENERS = {"LPAREN", "LBRACKET", "LBRACE"}
CLOSERS = {"RPAREN", "RBRACKET", "RBRACE"}

# Longest first so that "**=" wins over "**" and "*".
OPERATORS = (
    "**=",
    "//=",
    "**",
    "//",
    "==",
    "!=",
    "<=",
    ">=",
    "+=",
    "-=",
    "*=",
    "/=",
    "%=",
    "->",
    "+",
    "-",
    "*",
    "/",
    "%",
    "<",
    ">",
    "=",
)

_OPERAND_TYPES = {"NAME", "NUMBER", "STRING", "RPAREN", "RBRACKET", "RBRACE"}
_OPERAND_KEYWORDS = {"True", "False", "None"}


class Lexer:
    """Tokenizer for the Python subset produced by the block compiler.

    NEWLINE tokens are only emitted outside brackets, so a bracketed
    continuation stays on one logical line. In tolerant mode characters the
    lexer does not understand become ERRORTOKEN instead of raising.
    """

    def __init__(self, source: str, tolerant: bool = False) -> None:
        self.source = source
        self.length = len(source)
        self.tolerant = tolerant
        self.index = 0
        self.line = 1
        self.column = 1
        self.depth = 0

    def tokenize(self) -> list[Token]:
        tokens: list[Token] = []
        while not self._at_end():
            ch = self._peek()
            if ch == "\ufeff":
                self._advance()
                continue
            if ch in (" ", "\t", "\r", "\f"):
                self._advance()
                continue
            if ch == "\\" and self._peek(1) == "\n":
                self._advance()
                self._advance()
                continue
            if ch == "\n":
                if self.depth == 0:
                    tokens.append(self._token("NEWLINE", self.index, self.index + 1, self.line, self.column))
                self._advance()
                continue
            if ch == "#":
                self._skip_comment()
                continue
            if ch in ('"', "'"):
                tokens.append(self._read_string())
                continue
            if ch.isdigit() or (ch == "." and self._peek(1).isdigit()):
                tokens.append(self._read_number())
                continue
            if ch.isalpha() or ch == "_":
                tokens.append(self._read_identifier())
                continue
            if ch in SYMBOLS:
                tokens.append(self._read_symbol())
                continue
            op = self._match_operator()
            if op is not None:
                start, line, col = self.index, self.line, self.column
                for _ in op:
                    self._advance()
                tokens.append(self._token("OP", start, self.index, line, col))
                continue
            if not self.tolerant:
                raise LexerError(f"Unexpected character {ch!r} (line {self.line}, column {self.column})")
            start, line, col = self.index, self.line, self.column
            self._advance()
            tokens.append(self._token("ERRORTOKEN", start, self.index, line, col))
        tokens.append(Token("EOF", "", self.line, self.column, self.index, self.index))
        return tokens

    def _token(self, token_type: str, start: int, end: int, line: int, column: int) -> Token:
        return Token(token_type, self.source[start:end], line, column, start, end)

    def _read_symbol(self) -> Token:
        start, line, col = self.index, self.line, self.column
        token_type = SYMBOLS[self._advance()]
        if token_type in OPENERS:
            self.depth += 1
        elif token_type in CLOSERS and self.depth > 0:
            self.depth -= 1
        return self._token(token_type, start, self.index, line, col)

    def _match_operator(self) -> str | None:
        for op in OPERATORS:
            if self.source.startswith(op, self.index):
                return op
        return None

    def _read_identifier(self) -> Token:
        start, line, col = self.index, self.line, self.column
        self._advance()
        while not self._at_end():
            ch = self._peek()
            if ch.isalnum() or ch == "_":
                self._advance()
            else:
                break
        value = self.source[start : self.index]
        if value in KEYWORDS:
            return self._token("KEYWORD", start, self.index, line, col)
        return self._token("NAME", start, self.index, line, col)

    def _read_number(self) -> Token:
        start, line, col = self.index, self.line, self.column
        seen_dot = False
        while not self._at_end():
            ch = self._peek()
            if ch.isdigit() or ch == "_":
                self._advance()
                continue
            if ch == "." and not seen_dot:
                seen_dot = True
                self._advance()
                continue
            break
        return self._token("NUMBER", start, self.index, line, col)

    def _read_string(self) -> Token:
        start, line, col = self.index, self.line, self.column
        quote = self._peek()
        triple = self.source.startswith(quote * 3, self.index)
        delimiter = quote * 3 if triple else quote
        for _ in delimiter:
            self._advance()
        while not self._at_end():
            if self.source.startswith(delimiter, self.index):
                for _ in delimiter:
                    self._advance()
                return self._token("STRING", start, self.index, line, col)
            ch = self._peek()
            if ch == "\\":
                self._advance()
                if not self._at_end():
                    self._advance()
                continue
            if ch == "\n" and not triple:
                break
            self._advance()
        if not self.tolerant:
            raise LexerError(f"Unterminated string literal (line {line}, column {col})")
        return self._token("ERRORTOKEN", start, self.index, line, col)

    def _skip_comment(self) -> None:
        while not self._at_end() and self._peek() != "\n":
            self._advance()

    def _peek(self, offset: int = 0) -> str:
        if self.index + offset >= self.length:
            return "\0"
        return self.source[self.index + offset]

    def _advance(self) -> str:
        ch = self.source[self.index]
        self.index += 1
        if ch == "\n":
            self.line += 1
            self.column = 1
        else:
            self.column += 1
        return ch

    def _at_end(self) -> bool:
        return self.index >= self.length


def tokenize(source: str, tolerant: bool = True) -> list[Token]:
    return Lexer(source, tolerant=tolerant).tokenize()


def logical_lines(source: str) -> list[SourceLine]:
    """Split source into logical lines, dropping comments and blank lines."""
    source = source.replace("\r\n", "\n")
    physical = source.split("\n")
    tokens = tokenize(source, tolerant=True)

    lines: list[SourceLine] = []
    group: list[Token] = []
    previous_end = 0
    for token in tokens:
        if token.type not in ("NEWLINE", "EOF"):
            group.append(token)
            continue
        if not group:
            continue
        first, last = group[0], group[-1]
        end_line = last.line + source.count("\n", last.start, last.end)
        row = physical[first.line - 1]
        indent = len(row.expandtabs(4)) - len(row.expandtabs(4).lstrip())
        between = physical[previous_end : first.line - 1]
        blank_before = bool(lines) and any(not text.strip() for text in between)
        raw = textwrap.dedent("\n".join(physical[first.line - 1 : end_line]))
        lines.append(
            SourceLine(
                text=source[first.start : last.end],
                indent=indent,
                line=first.line,
                end_line=end_line,
                blank_before=blank_before,
                raw=raw.rstrip(),
            )
        )
        previous_end = end_line
        group = []
    return lines


def _significant(text: str) -> list[Token]:
    return [t for t in tokenize(text) if t.type not in ("NEWLINE", "EOF")]


def is_balanced(text: str) -> bool:
    depth = 0
    for token in _significant(text):
        if token.type == "ERRORTOKEN":
            return False
        if token.type in OPENERS:
            depth += 1
        elif token.type in CLOSERS:
            depth -= 1
            if depth < 0:
                return False
    return depth == 0


def split_top_level(text: str, separator: str = "COMMA") -> list[str] | None:
    """Split text at separators outside brackets; None when unbalanced."""
    if not text.strip():
        return []
    if not is_balanced(text):
        return None
    parts: list[str] = []
    depth = 0
    start = 0
    for token in _significant(text):
        if token.type in OPENERS:
            depth += 1
        elif token.type in CLOSERS:
            depth -= 1
        elif token.type == separator and depth == 0:
            parts.append(text[start : token.start].strip())
            start = token.end
    parts.append(text[start:].strip())
    return parts


def strip_parens(text: str) -> str:
    """Remove parentheses that enclose the whole expression."""
    text = text.strip()
    while text.startswith("("):
        tokens = _significant(text)
        depth = 0
        closing = None
        for token in tokens:
            if token.type in OPENERS:
                depth += 1
            elif token.type in CLOSERS:
                depth -= 1
                if depth == 0:
                    closing = token
                    break
        if closing is None or closing is not tokens[-1] or closing.type != "RPAREN":
            break
        inner = text[1 : closing.start].strip()
        # "()" and "(a,)" are tuples, not groupings.
        if not inner or split_top_level(inner) != [inner]:
            break
        text = inner
    return text


def _is_operand(token: Token | None) -> bool:
    if token is None:
        return False
    if token.type == "KEYWORD":
        return token.value in _OPERAND_KEYWORDS
    return token.type in _OPERAND_TYPES


def find_operator(text: str, operators: set[str], right_assoc: bool = False) -> tuple[str, str, str] | None:
    """Find a binary operator outside brackets.

    Returns (left, operator, right). The rightmost occurrence is used for
    left-associative operators and the leftmost for right-associative ones.
    A "-" or "+" that follows another operator is a sign, not a binary
    operator, and is skipped.
    """
    if not is_balanced(text):
        return None
    depth = 0
    previous: Token | None = None
    found: Token | None = None
    for token in _significant(text):
        if token.type in OPENERS:
            depth += 1
        elif token.type in CLOSERS:
            depth -= 1
        elif depth == 0 and token.type in ("OP", "KEYWORD") and token.value in operators and _is_operand(previous):
            found = token
            if right_assoc:
                break
        previous = token
    if found is None:
        return None
    return text[: found.start].strip(), found.value, text[found.end :].strip()


STRING_ESCAPES = {
    '"': '"',
    "'": "'",
    "\\": "\\",
    "n": "\n",
    "r": "\r",
    "t": "\t",
    "0": "\0",
}


def decode_string_literal(raw: str) -> str:
    raw = raw.strip()
    if len(raw) < 2 or raw[0] not in ("'", '"') or raw[-1] != raw[0]:
        raise LexerError(f"Not a string literal: {raw!r}")
    body = raw[3:-3] if len(raw) >= 6 and raw[:3] == raw[0] * 3 and raw[-3:] == raw[0] * 3 else raw[1:-1]
    chars: list[str] = []
    index = 0
    while index < len(body):
        ch = body[index]
        index += 1
        if ch == "\\" and index < len(body):
            esc = body[index]
            index += 1
            chars.append(STRING_ESCAPES.get(esc, "\\" + esc))
            continue
        chars.append(ch)
    return "".join(chars)


def encode_string_literal(value: str) -> str:
    out = ['"']
    for ch in value:
        if ch == "\\":
            out.append("\\\\")
        elif ch == '"':
            out.append('\\"')
        elif ch == "\n":
            out.append("\\n")
        elif ch == "\r":
            out.append("\\r")
        elif ch == "\t":
            out.append("\\t")
        else:
            out.append(ch)
    out.append('"')
    return "".join(out)
