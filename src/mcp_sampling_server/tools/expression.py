"""
Restricted arithmetic expression evaluator.

Grammar::

    expr    := term (("+" | "-") term)*
    term    := unary (("*" | "/" | "%") unary)*
    unary   := ("+" | "-") unary | power
    power   := primary ("**" unary)?
    primary := NUMBER | "(" expr ")"

Nothing outside this grammar is ever evaluated.
"""

import math
import re

MAX_EXPRESSION_LENGTH = 256
MAX_NESTING_DEPTH = 64
MAX_EXPONENT = 1024

_ALLOWED = re.compile(r"^[\d+\-*/().%\s]+$")
_TOKEN = re.compile(r"\s*(?:(\d+\.\d*|\.\d+|\d+)|(\*\*|[+\-*/%()]))")


class ExpressionError(ValueError):
    """Raised for input outside the accepted grammar or a non-finite result."""


def _tokenize(expression: str) -> list[str]:
    tokens = []
    position = 0
    stripped = expression.rstrip()
    while position < len(stripped):
        match = _TOKEN.match(stripped, position)
        if match is None:
            raise ExpressionError("Could not evaluate expression")
        tokens.append(match.group(1) or match.group(2))
        position = match.end()
    return tokens


class _Parser:
    def __init__(self, tokens: list[str]):
        self.tokens = tokens
        self.index = 0
        self.depth = 0

    def peek(self) -> str | None:
        return self.tokens[self.index] if self.index < len(self.tokens) else None

    def take(self) -> str:
        token = self.peek()
        if token is None:
            raise ExpressionError("Unexpected end of expression")
        self.index += 1
        return token

    def parse(self) -> float:
        value = self.expr()
        if self.peek() is not None:
            raise ExpressionError(f"Unexpected token '{self.peek()}'")
        return value

    def expr(self) -> float:
        value = self.term()
        while self.peek() in ("+", "-"):
            if self.take() == "+":
                value += self.term()
            else:
                value -= self.term()
        return value

    def term(self) -> float:
        value = self.unary()
        while self.peek() in ("*", "/", "%"):
            operator = self.take()
            right = self.unary()
            if operator == "*":
                value *= right
            elif right == 0:
                raise ExpressionError("Division by zero")
            elif operator == "/":
                value /= right
            else:
                # Remainder takes the sign of the dividend
                value = math.fmod(value, right)
        return value

    def unary(self) -> float:
        if self.peek() in ("+", "-"):
            operator = self.take()
            self._enter()
            try:
                value = self.unary()
            finally:
                self.depth -= 1
            return -value if operator == "-" else value
        return self.power()

    def power(self) -> float:
        base = self.primary()
        if self.peek() == "**":
            self.take()
            exponent = self.unary()
            if abs(exponent) > MAX_EXPONENT:
                raise ExpressionError("Exponent too large")
            try:
                return math.pow(base, exponent)
            except (OverflowError, ValueError) as e:
                raise ExpressionError("Could not evaluate expression") from e
        return base

    def primary(self) -> float:
        token = self.take()
        if token == "(":
            self._enter()
            try:
                value = self.expr()
            finally:
                self.depth -= 1
            if self.take() != ")":
                raise ExpressionError("Missing closing parenthesis")
            return value
        if token[0].isdigit() or token[0] == ".":
            return float(token)
        raise ExpressionError(f"Unexpected token '{token}'")

    def _enter(self) -> None:
        self.depth += 1
        if self.depth > MAX_NESTING_DEPTH:
            raise ExpressionError("Expression is nested too deeply")


def evaluate(expression: str) -> float:
    """Evaluate an arithmetic expression, raising ExpressionError on bad input."""
    if not expression or not expression.strip():
        raise ExpressionError("Empty expression")
    if len(expression) > MAX_EXPRESSION_LENGTH:
        raise ExpressionError("Expression is too long")
    if not _ALLOWED.match(expression):
        raise ExpressionError("Invalid expression. Only basic math operations allowed.")

    value = _Parser(_tokenize(expression)).parse()
    if not math.isfinite(value):
        raise ExpressionError("Result is not a finite number")
    return value


def format_number(value: float) -> str:
    """Render integral results without a trailing ``.0``."""
    if value.is_integer() and abs(value) < 1e21:
        return str(int(value))
    return repr(value)
