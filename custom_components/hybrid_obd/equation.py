"""Torque-style equation compiler.

Community PID sheets describe signals with spreadsheet-like formulas:

- bytes are referenced as A, B, ... Z, AA, AB, ... (A is the first payload byte)
- ``{A:6}`` extracts bit 6 of byte A (0 or 1)
- ``+ - * /`` with parentheses and unary minus

Formulas are compiled into a postfix program once and evaluated against the
payload bytes of each response. Nothing here calls ``eval``.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass

_LOGGER = logging.getLogger(__name__)

Decoder = Callable[[Sequence[int]], float]

_BIT_EXTRACTION = re.compile(r"^([A-Z]+)\s*:\s*(\d+)$")
_VARIABLE_NAME = re.compile(r"^[A-Z]+$")
_OPERATORS = "+-*/"
_NEG = "NEG"
_MAX_BIT = 31


class EquationError(ValueError):
    """Raised when an equation cannot be compiled."""


@dataclass(frozen=True)
class Token:
    """A single lexical element of an equation."""

    kind: str  # "number", "var", "bit", "op", "lparen", "rparen"
    value: float = 0.0
    name: str = ""
    bit: int = 0
    op: str = ""


def variable_index(name: str) -> int:
    """Convert a byte variable name to a zero-based payload index.

    A=0 ... Z=25, AA=26, AB=27, ... AZ=51, BA=52. Returns -1 for names that
    are not made of letters only.
    """
    upper = name.upper()
    if not _VARIABLE_NAME.match(upper):
        return -1
    index = 0
    for char in upper:
        index = index * 26 + (ord(char) - ord("A") + 1)
    return index - 1


def tokenize(expression: str) -> list[Token]:
    """Split an equation into tokens."""
    text = expression.strip().upper()
    tokens: list[Token] = []
    pos = 0

    while pos < len(text):
        char = text[pos]

        if char.isspace():
            pos += 1
            continue

        if char == "{":
            end = text.find("}", pos + 1)
            if end == -1:
                raise EquationError("Unterminated bit extraction")
            inner = text[pos + 1 : end].strip()
            match = _BIT_EXTRACTION.match(inner)
            if match is None:
                raise EquationError(f"Invalid bit extraction: {{{inner}}}")
            tokens.append(Token("bit", name=match.group(1), bit=int(match.group(2))))
            pos = end + 1
            continue

        if char.isdigit() or (
            char == "." and pos + 1 < len(text) and text[pos + 1].isdigit()
        ):
            end = pos
            seen_dot = False
            while end < len(text):
                if text[end].isdigit():
                    end += 1
                elif text[end] == "." and not seen_dot:
                    seen_dot = True
                    end += 1
                else:
                    break
            tokens.append(Token("number", value=float(text[pos:end])))
            pos = end
            continue

        if "A" <= char <= "Z":
            end = pos + 1
            while end < len(text) and "A" <= text[end] <= "Z":
                end += 1
            tokens.append(Token("var", name=text[pos:end]))
            pos = end
            continue

        if char in _OPERATORS:
            tokens.append(Token("op", op=char))
            pos += 1
            continue
        if char == "(":
            tokens.append(Token("lparen"))
            pos += 1
            continue
        if char == ")":
            tokens.append(Token("rparen"))
            pos += 1
            continue

        raise EquationError(f"Unexpected character: {char!r}")

    return tokens


def _precedence(op: str) -> int:
    if op == _NEG:
        return 3
    if op in ("*", "/"):
        return 2
    return 1


def to_postfix(tokens: list[Token]) -> list[Token]:
    """Reorder tokens into postfix form using the shunting-yard algorithm."""
    output: list[Token] = []
    stack: list[Token] = []
    prev: Token | None = None

    for token in tokens:
        if token.kind == "op" and token.op == "-":
            # Minus is unary at the start, after an operator or after "(".
            if prev is None or prev.kind in ("op", "lparen"):
                token = Token("op", op=_NEG)

        if token.kind in ("number", "var", "bit"):
            output.append(token)
        elif token.kind == "op":
            right_assoc = token.op == _NEG
            while stack and stack[-1].kind == "op":
                top_prec = _precedence(stack[-1].op)
                prec = _precedence(token.op)
                if (right_assoc and prec < top_prec) or (
                    not right_assoc and prec <= top_prec
                ):
                    output.append(stack.pop())
                else:
                    break
            stack.append(token)
        elif token.kind == "lparen":
            stack.append(token)
        elif token.kind == "rparen":
            while stack and stack[-1].kind != "lparen":
                output.append(stack.pop())
            if not stack:
                raise EquationError("Mismatched parentheses")
            stack.pop()
        prev = token

    while stack:
        top = stack.pop()
        if top.kind == "lparen":
            raise EquationError("Mismatched parentheses")
        output.append(top)

    _check_postfix(output)
    return output


def _check_postfix(program: list[Token]) -> None:
    """Reject programs that would run out of operands."""
    depth = 0
    for token in program:
        if token.kind in ("number", "var", "bit"):
            depth += 1
        elif token.op == _NEG:
            if depth < 1:
                raise EquationError("Missing operand for unary minus")
        else:
            if depth < 2:
                raise EquationError(f"Missing operand for {token.op!r}")
            depth -= 1
    if depth != 1:
        raise EquationError("Malformed expression")


def _byte(data: Sequence[int], name: str) -> int:
    index = variable_index(name)
    if index < 0 or index >= len(data):
        return 0
    return int(data[index])


def evaluate(program: list[Token], data: Sequence[int]) -> float:
    """Evaluate a postfix program against payload bytes."""
    stack: list[float] = []

    for token in program:
        if token.kind == "number":
            stack.append(token.value)
        elif token.kind == "var":
            stack.append(_byte(data, token.name))
        elif token.kind == "bit":
            bit = max(0, min(_MAX_BIT, token.bit))
            stack.append((_byte(data, token.name) >> bit) & 1)
        elif token.op == _NEG:
            stack.append(-stack.pop())
        else:
            right = stack.pop()
            left = stack.pop()
            if token.op == "+":
                stack.append(left + right)
            elif token.op == "-":
                stack.append(left - right)
            elif token.op == "*":
                stack.append(left * right)
            else:
                # Division by zero decodes as 0 rather than inf/nan.
                stack.append(left / right if right != 0 else 0)

    return stack[-1] if stack else 0


def _zero(data: Sequence[int]) -> float:
    del data
    return 0


def compile_equation(expression: str | None) -> Decoder:
    """Compile an equation into a decoder function.

    Empty or invalid equations produce a decoder that always returns 0.
    """
    text = (expression or "").strip()
    if not text:
        return _zero

    try:
        program = to_postfix(tokenize(text))
    except EquationError as err:
        _LOGGER.warning("Failed to compile equation %r: %s", expression, err)
        return _zero

    def _decode(data: Sequence[int]) -> float:
        return evaluate(program, data)

    return _decode
