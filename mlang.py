#!/usr/bin/env python3

from abc import ABC, abstractmethod
from argparse import ArgumentParser
from copy import copy
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Callable, Iterable, Optional, SupportsFloat, Union, final
import enum
import math
import os
import re
import sys


# Name bound to the receiver inside a user-defined transformer body.
APPLIED = "applied"
# Directory holding the bundled `stdlib/` sources, searched when a `use` path
# does not exist relative to the base directory.
LIBRARY_ROOT = Path(__file__).resolve().parent

I32_MIN = -(2**31)
I32_MAX = 2**31 - 1

# Each script-level call uses several host frames.
RECURSION_LIMIT = 10000


def truncate(data: float) -> int:
    """
    Truncate toward zero into the 32-bit signed integer range, saturating at
    the bounds and mapping NaN to zero.
    """
    if math.isnan(data):
        return 0
    return int(max(I32_MIN, min(I32_MAX, data)))


RE_FLOAT = re.compile(
    r"[+-]?(?:inf|infinity|nan|(?:[0-9]+\.?[0-9]*|\.[0-9]+)(?:[eE][+-]?[0-9]+)?)",
    re.ASCII | re.IGNORECASE,
)


def parse_float(text: str) -> Optional[float]:
    if RE_FLOAT.fullmatch(text) is None:
        return None
    return float(text)


class Value(ABC):
    @staticmethod
    @abstractmethod
    def typename() -> str:
        raise NotImplementedError()

    @abstractmethod
    def __str__(self):
        raise NotImplementedError()

    @abstractmethod
    def __copy__(self) -> "Value":
        raise NotImplementedError()


@final
@dataclass
class Nil(Value):
    @staticmethod
    def typename() -> str:
        return "nil"

    def __str__(self):
        return "nil"

    def __copy__(self) -> "Nil":
        return Nil()


@final
@dataclass
class Boolean(Value):
    data: bool

    @staticmethod
    def typename() -> str:
        return "boolean"

    def __str__(self):
        return "true" if self.data else "false"

    def __copy__(self) -> "Boolean":
        return Boolean(self.data)


@final
@dataclass
class Number(Value):
    data: float

    @staticmethod
    def typename() -> str:
        return "number"

    def __init__(self, data: SupportsFloat):
        # Integers are accepted for convenience, but the stored value is
        # always an IEEE-754 double.
        self.data = float(data)

    def __str__(self):
        if math.isnan(self.data):
            return "NaN"
        if self.data == +math.inf:
            return "inf"
        if self.data == -math.inf:
            return "-inf"
        # The repr of a float is its shortest round-trip form. Expand any
        # exponent into plain positional digits.
        string = format(Decimal(repr(self.data)), "f")
        if "." in string:
            string = string.rstrip("0").rstrip(".")
        return string

    def __copy__(self) -> "Number":
        return Number(self.data)


@final
@dataclass
class String(Value):
    data: str

    @staticmethod
    def typename() -> str:
        return "string"

    def __str__(self):
        return self.data

    def __copy__(self) -> "String":
        return String(self.data)


@final
@dataclass
class Array(Value):
    elements: list[Value]

    @staticmethod
    def typename() -> str:
        return "array"

    def __str__(self):
        return "[" + ", ".join(str(x) for x in self.elements) + "]"

    def __copy__(self) -> "Array":
        return Array([copy(x) for x in self.elements])


@final
@dataclass
class Function(Value):
    parameters: list[str]
    body: list["AstExpression"]

    @staticmethod
    def typename() -> str:
        return "function"

    def __str__(self):
        return "<function>"

    def __copy__(self) -> "Function":
        return Function(list(self.parameters), self.body)


@final
@dataclass
class Transformer(Value):
    parameters: list[str]
    body: list["AstExpression"]

    @staticmethod
    def typename() -> str:
        return "transformer"

    def __str__(self):
        return "<transformer>"

    def __copy__(self) -> "Transformer":
        return Transformer(list(self.parameters), self.body)


def typename(value: Value) -> str:
    return value.typename()


@dataclass
class SourceLocation:
    filename: Optional[str]
    line: int

    def __str__(self):
        if self.filename is None:
            return f"line {self.line}"
        return f"{self.filename}, line {self.line}"


class TokenKind(enum.Enum):
    # Meta
    EOF = "eof"
    # Identifiers and Literals
    IDENTIFIER = "identifier"
    NUMBER = "number"
    STRING = "string"
    # Operators
    PLUS = "+"
    MINUS = "-"
    MULTIPLY = "*"
    DIVIDE = "/"
    MODULO = "%"
    EQUAL = "="
    EQUAL_EQUAL = "=="
    BANG_EQUAL = "!="
    LESS_THAN = "<"
    LESS_THAN_EQUAL = "<="
    GREATER_THAN = ">"
    GREATER_THAN_EQUAL = ">="
    # Delimiters
    COMMA = ","
    SEMICOLON = ";"
    DOT = "."
    LEFT_PAREN = "("
    RIGHT_PAREN = ")"
    LEFT_BRACE = "{"
    RIGHT_BRACE = "}"
    LEFT_BRACKET = "["
    RIGHT_BRACKET = "]"
    # Keywords
    TRUE = "true"
    FALSE = "false"
    AND = "and"
    OR = "or"
    NOT = "not"
    FN = "fn"
    RETURN = "return"
    IF = "if"
    ELSE = "else"
    FOR = "for"
    IN = "in"
    WHILE = "while"
    TRANSFORMER = "transformer"
    USE = "use"

    def __str__(self):
        return self.value


@dataclass
class Token:
    KEYWORDS = {
        # fmt: off
        str(TokenKind.TRUE):        TokenKind.TRUE,
        str(TokenKind.FALSE):       TokenKind.FALSE,
        str(TokenKind.AND):         TokenKind.AND,
        str(TokenKind.OR):          TokenKind.OR,
        str(TokenKind.NOT):         TokenKind.NOT,
        str(TokenKind.FN):          TokenKind.FN,
        str(TokenKind.RETURN):      TokenKind.RETURN,
        str(TokenKind.IF):          TokenKind.IF,
        str(TokenKind.ELSE):        TokenKind.ELSE,
        str(TokenKind.FOR):         TokenKind.FOR,
        str(TokenKind.IN):          TokenKind.IN,
        str(TokenKind.WHILE):       TokenKind.WHILE,
        str(TokenKind.TRANSFORMER): TokenKind.TRANSFORMER,
        str(TokenKind.USE):         TokenKind.USE,
        # fmt: on
    }

    kind: TokenKind
    literal: str
    location: Optional[SourceLocation] = None

    def __str__(self):
        if self.kind == TokenKind.EOF:
            return "end-of-file"
        if self.kind == TokenKind.STRING:
            return f'"{self.literal}"'
        return self.literal

    @staticmethod
    def lookup_identifier(identifier: str) -> TokenKind:
        return Token.KEYWORDS.get(identifier, TokenKind.IDENTIFIER)


class Lexer:
    EOF_LITERAL = ""
    WHITESPACE = " \t\r\n"
    RE_IDENTIFIER = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*", re.ASCII)
    RE_NUMBER = re.compile(r"^[0-9][0-9.]*", re.ASCII)

    def __init__(self, source: str, location: Optional[SourceLocation] = None):
        self.source: str = source
        # What position does the source "start" being lexed from.
        # None if the source is being lexed in a location-independent manner.
        self.location: Optional[SourceLocation] = (
            SourceLocation(location.filename, location.line)
            if location is not None
            else None
        )
        self.position: int = 0

    @staticmethod
    def _is_letter(ch: str) -> bool:
        return ch.isascii() and (ch.isalpha() or ch == "_")

    @staticmethod
    def _is_digit(ch: str) -> bool:
        return ch.isascii() and ch.isdigit()

    def _current_character(self) -> str:
        if self.position >= len(self.source):
            return Lexer.EOF_LITERAL
        return self.source[self.position]

    def _peek_character(self) -> str:
        if self.position + 1 >= len(self.source):
            return Lexer.EOF_LITERAL
        return self.source[self.position + 1]

    def _is_eof(self) -> bool:
        return self.position >= len(self.source)

    def _advance_character(self) -> None:
        if self._is_eof():
            return
        if self.location is not None:
            self.location.line += int(self.source[self.position] == "\n")
        self.position += 1

    def _skip_whitespace(self) -> None:
        while not self._is_eof() and self._current_character() in Lexer.WHITESPACE:
            self._advance_character()

    def _skip_comment(self) -> None:
        if not (self._current_character() == "/" and self._peek_character() == "/"):
            return
        while not self._is_eof() and self._current_character() != "\n":
            self._advance_character()

    def _skip_whitespace_and_comments(self) -> None:
        while not self._is_eof() and (
            self._current_character() in Lexer.WHITESPACE
            or (self._current_character() == "/" and self._peek_character() == "/")
        ):
            self._skip_whitespace()
            self._skip_comment()

    def _new_token(self, kind: TokenKind, literal: str) -> Token:
        location = (
            SourceLocation(self.location.filename, self.location.line)
            if self.location is not None
            else None
        )
        return Token(kind, literal, location)

    def _lex_keyword_or_identifier(self) -> Token:
        assert Lexer._is_letter(self._current_character())
        match = Lexer.RE_IDENTIFIER.match(self.source[self.position :])
        assert match is not None  # guaranteed by regexp
        text = match[0]
        self.position += len(text)
        return self._new_token(Token.lookup_identifier(text), text)

    def _lex_number(self) -> Token:
        assert Lexer._is_digit(self._current_character())
        match = Lexer.RE_NUMBER.match(self.source[self.position :])
        assert match is not None  # guaranteed by regexp
        text = match[0]
        self.position += len(text)
        return self._new_token(TokenKind.NUMBER, text)

    def _lex_string(self) -> Token:
        assert self._current_character() == '"'
        token = self._new_token(TokenKind.STRING, "")
        self._advance_character()
        start = self.position
        while not self._is_eof() and self._current_character() != '"':
            self._advance_character()
        token.literal = self.source[start : self.position]
        # An unterminated string runs to the end of input.
        self._advance_character()
        return token

    def _lex_operator(self) -> Optional[Token]:
        current = self._current_character()
        if self._peek_character() == "=" and current in "=!<>":
            kind = TokenKind(current + "=")
            token = self._new_token(kind, str(kind))
            self._advance_character()
            self._advance_character()
            return token
        if current == "!":
            # A lone `!` is not an operator of the language.
            self._advance_character()
            return None
        try:
            kind = TokenKind(current)
        except ValueError:
            # Characters outside of the language are silently discarded.
            self._advance_character()
            return None
        token = self._new_token(kind, str(kind))
        self._advance_character()
        return token

    def next_token(self) -> Token:
        while True:
            self._skip_whitespace_and_comments()

            if self._is_eof():
                return self._new_token(TokenKind.EOF, Lexer.EOF_LITERAL)

            if Lexer._is_letter(self._current_character()):
                return self._lex_keyword_or_identifier()

            if Lexer._is_digit(self._current_character()):
                return self._lex_number()

            if self._current_character() == '"':
                return self._lex_string()

            token = self._lex_operator()
            if token is not None:
                return token

    def lex(self) -> list[Token]:
        tokens: list[Token] = list()
        while True:
            token = self.next_token()
            tokens.append(token)
            if token.kind == TokenKind.EOF:
                return tokens


@dataclass
class ParseError(Exception):
    location: Optional[SourceLocation]
    why: str

    def __str__(self):
        if self.location is None:
            return f"{self.why}"
        return f"[{self.location}] {self.why}"


class Environment:
    def __init__(self, enclosing: Optional["Environment"] = None):
        self.enclosing: Optional["Environment"] = enclosing
        self.values: dict[str, Value] = dict()

    def define(self, name: str, value: Value) -> None:
        self.values[name] = value

    def frames(self) -> list["Environment"]:
        """
        This frame followed by each enclosing frame, innermost first.
        """
        frames: list[Environment] = list()
        current: Optional[Environment] = self
        while current is not None:
            frames.append(current)
            current = current.enclosing
        return frames

    def get(self, name: str) -> Optional[Value]:
        for frame in self.frames():
            value = frame.values.get(name, None)
            if value is not None:
                return value
        return None

    def assign(self, name: str, value: Value) -> bool:
        """
        Update the binding in the nearest frame that defines `name`.
        Returns False if no frame in the chain defines it.
        """
        for frame in self.frames():
            if name in frame.values:
                frame.values[name] = value
                return True
        return False

    def __copy__(self) -> "Environment":
        # Snapshots are deep: the copy shares no mutable state with the source.
        # The chain is rebuilt outermost first, so call depth costs no host stack.
        result: Optional[Environment] = None
        for frame in reversed(self.frames()):
            result = Environment(result)
            result.values = {k: copy(v) for k, v in frame.values.items()}
        assert result is not None
        return result


@dataclass
class Error:
    location: Optional[SourceLocation]
    message: str

    def __str__(self):
        if self.location is None:
            return f"{self.message}"
        return f"[{self.location}] {self.message}"


class AstNode(ABC):
    location: Optional[SourceLocation]


class AstExpression(AstNode):
    location: Optional[SourceLocation]

    @abstractmethod
    def eval(self, interpreter: "Interpreter") -> Union[Value, Error]:
        raise NotImplementedError()


def execute_body(
    interpreter: "Interpreter", body: list[AstExpression]
) -> Union[Value, Error]:
    """
    Evaluate a function or transformer body. Evaluation stops after the first
    `return` appearing directly in the body, and the result is the value of the
    last expression evaluated. Nested returns (inside an if or a loop) do not
    end the body early.
    """
    result: Union[Value, Error] = Nil()
    for expression in body:
        result = expression.eval(interpreter)
        if isinstance(result, Error):
            return result
        if isinstance(expression, AstExpressionReturn):
            break
    return result


@final
@dataclass
class AstExpressionNumber(AstExpression):
    location: Optional[SourceLocation]
    value: float

    def eval(self, interpreter: "Interpreter") -> Union[Value, Error]:
        return Number(self.value)


@final
@dataclass
class AstExpressionString(AstExpression):
    location: Optional[SourceLocation]
    value: str

    def eval(self, interpreter: "Interpreter") -> Union[Value, Error]:
        return String(self.value)


@final
@dataclass
class AstExpressionBoolean(AstExpression):
    location: Optional[SourceLocation]
    value: bool

    def eval(self, interpreter: "Interpreter") -> Union[Value, Error]:
        return Boolean(self.value)


@final
@dataclass
class AstExpressionArray(AstExpression):
    location: Optional[SourceLocation]
    elements: list[AstExpression]

    def eval(self, interpreter: "Interpreter") -> Union[Value, Error]:
        values: list[Value] = list()
        for element in self.elements:
            value = element.eval(interpreter)
            if isinstance(value, Error):
                return value
            values.append(copy(value))
        return Array(values)


@final
@dataclass
class AstExpressionVariable(AstExpression):
    location: Optional[SourceLocation]
    name: str

    def eval(self, interpreter: "Interpreter") -> Union[Value, Error]:
        value = interpreter.environment.get(self.name)
        if value is None:
            return Error(self.location, f"Undefined variable: {self.name}")
        return value


def invalid_operands(
    location: Optional[SourceLocation], operator: TokenKind, lhs: Value, rhs: Value
) -> Error:
    return Error(
        location,
        f"Invalid operands for operator '{operator}': {typename(lhs)} and {typename(rhs)}",
    )


def values_equal(lhs: Value, rhs: Value) -> bool:
    match (lhs, rhs):
        case (Number(a), Number(b)):
            return a == b
        case (String(a), String(b)):
            return a == b
        case (Boolean(a), Boolean(b)):
            return a == b
        case (Nil(), Nil()):
            return True
    return False


def binary_add(
    location: Optional[SourceLocation], lhs: Value, rhs: Value
) -> Union[Value, Error]:
    match (lhs, rhs):
        case (Number(a), Number(b)):
            return Number(a + b)
        case (String(a), String(b)):
            return String(a + b)
        case (String(a), _):
            return String(a + str(rhs))
        case (_, String(b)):
            return String(str(lhs) + b)
        case (Array(a), Array(b)):
            return Array([copy(x) for x in a] + [copy(x) for x in b])
    return invalid_operands(location, TokenKind.PLUS, lhs, rhs)


def binary_sub(
    location: Optional[SourceLocation], lhs: Value, rhs: Value
) -> Union[Value, Error]:
    if isinstance(lhs, Number) and isinstance(rhs, Number):
        return Number(lhs.data - rhs.data)
    return invalid_operands(location, TokenKind.MINUS, lhs, rhs)


def binary_mul(
    location: Optional[SourceLocation], lhs: Value, rhs: Value
) -> Union[Value, Error]:
    if isinstance(lhs, Number) and isinstance(rhs, Number):
        return Number(lhs.data * rhs.data)
    return invalid_operands(location, TokenKind.MULTIPLY, lhs, rhs)


def binary_div(
    location: Optional[SourceLocation], lhs: Value, rhs: Value
) -> Union[Value, Error]:
    if not (isinstance(lhs, Number) and isinstance(rhs, Number)):
        return invalid_operands(location, TokenKind.DIVIDE, lhs, rhs)
    if rhs.data == 0.0:
        return Error(location, "Division by zero")
    return Number(lhs.data / rhs.data)


def binary_rem(
    location: Optional[SourceLocation], lhs: Value, rhs: Value
) -> Union[Value, Error]:
    if not (isinstance(lhs, Number) and isinstance(rhs, Number)):
        return invalid_operands(location, TokenKind.MODULO, lhs, rhs)
    if rhs.data == 0.0:
        return Error(location, "Modulo by zero")
    if math.isinf(lhs.data):
        return Number(math.nan)
    # Euclidean remainder: never negative for finite operands.
    remainder = math.fmod(lhs.data, rhs.data)
    if remainder < 0:
        remainder += abs(rhs.data)
    return Number(remainder)


def binary_compare(operator: TokenKind, compare: Callable[[float, float], bool]):
    def function(
        location: Optional[SourceLocation], lhs: Value, rhs: Value
    ) -> Union[Value, Error]:
        if isinstance(lhs, Number) and isinstance(rhs, Number):
            return Boolean(compare(lhs.data, rhs.data))
        return invalid_operands(location, operator, lhs, rhs)

    return function


def binary_logical(operator: TokenKind, combine: Callable[[bool, bool], bool]):
    def function(
        location: Optional[SourceLocation], lhs: Value, rhs: Value
    ) -> Union[Value, Error]:
        if isinstance(lhs, Boolean) and isinstance(rhs, Boolean):
            return Boolean(combine(lhs.data, rhs.data))
        return invalid_operands(location, operator, lhs, rhs)

    return function


BinaryOperator = Callable[
    [Optional[SourceLocation], Value, Value], Union[Value, Error]
]

BINARY_OPERATORS: dict[TokenKind, BinaryOperator] = {
    # fmt: off
    TokenKind.PLUS:               binary_add,
    TokenKind.MINUS:              binary_sub,
    TokenKind.MULTIPLY:           binary_mul,
    TokenKind.DIVIDE:             binary_div,
    TokenKind.MODULO:             binary_rem,
    TokenKind.EQUAL_EQUAL:        lambda _, a, b: Boolean(values_equal(a, b)),
    TokenKind.BANG_EQUAL:         lambda _, a, b: Boolean(not values_equal(a, b)),
    TokenKind.LESS_THAN:          binary_compare(TokenKind.LESS_THAN, lambda a, b: a < b),
    TokenKind.LESS_THAN_EQUAL:    binary_compare(TokenKind.LESS_THAN_EQUAL, lambda a, b: a <= b),
    TokenKind.GREATER_THAN:       binary_compare(TokenKind.GREATER_THAN, lambda a, b: a > b),
    TokenKind.GREATER_THAN_EQUAL: binary_compare(TokenKind.GREATER_THAN_EQUAL, lambda a, b: a >= b),
    TokenKind.AND:                binary_logical(TokenKind.AND, lambda a, b: a and b),
    TokenKind.OR:                 binary_logical(TokenKind.OR, lambda a, b: a or b),
    # fmt: on
}


@final
@dataclass
class AstExpressionBinary(AstExpression):
    location: Optional[SourceLocation]
    lhs: AstExpression
    operator: TokenKind
    rhs: AstExpression

    def eval(self, interpreter: "Interpreter") -> Union[Value, Error]:
        # Both operands are always evaluated, left first; `and` and `or` do
        # not short-circuit.
        lhs = self.lhs.eval(interpreter)
        if isinstance(lhs, Error):
            return lhs
        rhs = self.rhs.eval(interpreter)
        if isinstance(rhs, Error):
            return rhs
        return BINARY_OPERATORS[self.operator](self.location, lhs, rhs)


@final
@dataclass
class AstExpressionUnary(AstExpression):
    location: Optional[SourceLocation]
    operator: TokenKind
    rhs: AstExpression

    def eval(self, interpreter: "Interpreter") -> Union[Value, Error]:
        rhs = self.rhs.eval(interpreter)
        if isinstance(rhs, Error):
            return rhs
        if self.operator == TokenKind.MINUS and isinstance(rhs, Number):
            return Number(-rhs.data)
        if self.operator == TokenKind.NOT and isinstance(rhs, Boolean):
            return Boolean(not rhs.data)
        return Error(
            self.location,
            f"Invalid operand for unary operator '{self.operator}': {typename(rhs)}",
        )


@final
@dataclass
class AstExpressionAssign(AstExpression):
    location: Optional[SourceLocation]
    name: str
    value: AstExpression

    def eval(self, interpreter: "Interpreter") -> Union[Value, Error]:
        value = self.value.eval(interpreter)
        if isinstance(value, Error):
            return value
        if not interpreter.environment.assign(self.name, copy(value)):
            interpreter.environment.define(self.name, copy(value))
        return value


@final
@dataclass
class AstExpressionCall(AstExpression):
    location: Optional[SourceLocation]
    callee: str
    arguments: list[AstExpression]

    def eval(self, interpreter: "Interpreter") -> Union[Value, Error]:
        builtin = BUILTIN_FUNCTIONS.get(self.callee)
        if builtin is not None:
            return builtin(interpreter, self.location, self.arguments)
        function = interpreter.environment.get(self.callee)
        if not isinstance(function, Function):
            return Error(self.location, f"Undefined function '{self.callee}'")
        return interpreter.invoke(function.parameters, function.body, self.arguments)


@final
@dataclass
class AstExpressionFunction(AstExpression):
    location: Optional[SourceLocation]
    name: str
    parameters: list[str]
    body: list[AstExpression]

    def eval(self, interpreter: "Interpreter") -> Union[Value, Error]:
        function = Function(list(self.parameters), self.body)
        interpreter.environment.define(self.name, function)
        return function


@final
@dataclass
class AstExpressionTransformer(AstExpression):
    location: Optional[SourceLocation]
    name: str
    parameters: list[str]
    body: list[AstExpression]

    def eval(self, interpreter: "Interpreter") -> Union[Value, Error]:
        transformer = Transformer(list(self.parameters), self.body)
        interpreter.environment.define(self.name, transformer)
        return transformer


@final
@dataclass
class AstExpressionReturn(AstExpression):
    location: Optional[SourceLocation]
    value: Optional[AstExpression]

    def eval(self, interpreter: "Interpreter") -> Union[Value, Error]:
        if self.value is None:
            return Nil()
        return self.value.eval(interpreter)


@final
@dataclass
class AstExpressionBlock(AstExpression):
    location: Optional[SourceLocation]
    expressions: list[AstExpression]

    def eval(self, interpreter: "Interpreter") -> Union[Value, Error]:
        result: Union[Value, Error] = Nil()
        for expression in self.expressions:
            result = expression.eval(interpreter)
            if isinstance(result, Error):
                return result
        return result


@final
@dataclass
class AstExpressionIf(AstExpression):
    location: Optional[SourceLocation]
    condition: AstExpression
    then_branch: AstExpression
    else_branch: Optional[AstExpression]

    def eval(self, interpreter: "Interpreter") -> Union[Value, Error]:
        condition = self.condition.eval(interpreter)
        if isinstance(condition, Error):
            return condition
        if not isinstance(condition, Boolean):
            return Error(self.location, "Condition must be a boolean value")
        if condition.data:
            return self.then_branch.eval(interpreter)
        if self.else_branch is not None:
            return self.else_branch.eval(interpreter)
        return Nil()


@final
@dataclass
class AstExpressionFor(AstExpression):
    location: Optional[SourceLocation]
    variable: str
    iterable: AstExpression
    body: AstExpression

    def eval(self, interpreter: "Interpreter") -> Union[Value, Error]:
        iterable = self.iterable.eval(interpreter)
        if isinstance(iterable, Error):
            return iterable
        match iterable:
            case Array(elements):
                items: list[Value] = [copy(x) for x in elements]
            case String(data):
                items = [String(c) for c in data]
            case _:
                return Error(self.location, "Cannot iterate over non-iterable value")

        result: Union[Value, Error] = Nil()
        for item in items:
            interpreter.push_frame()
            interpreter.environment.define(self.variable, item)
            result = self.body.eval(interpreter)
            interpreter.pop_frame()
            if isinstance(result, Error):
                return result
        return result


@final
@dataclass
class AstExpressionWhile(AstExpression):
    location: Optional[SourceLocation]
    condition: AstExpression
    body: AstExpression

    def eval(self, interpreter: "Interpreter") -> Union[Value, Error]:
        while True:
            condition = self.condition.eval(interpreter)
            if isinstance(condition, Error):
                return condition
            if not isinstance(condition, Boolean):
                return Error(self.location, "Condition must be a boolean value")
            if not condition.data:
                return Nil()
            interpreter.push_frame()
            result = self.body.eval(interpreter)
            interpreter.pop_frame()
            if isinstance(result, Error):
                return result


@final
@dataclass
class AstExpressionIndex(AstExpression):
    location: Optional[SourceLocation]
    store: AstExpression
    index: AstExpression

    def eval(self, interpreter: "Interpreter") -> Union[Value, Error]:
        store = self.store.eval(interpreter)
        if isinstance(store, Error):
            return store
        index = self.index.eval(interpreter)
        if isinstance(index, Error):
            return index
        if not (isinstance(store, Array) and isinstance(index, Number)):
            return Error(self.location, "Cannot index non-array type")
        # Negative indices saturate to the first element.
        position = max(0, truncate(index.data))
        if position >= len(store.elements):
            return Error(self.location, f"Index out of bounds: {position}")
        return copy(store.elements[position])


@final
@dataclass
class AstExpressionApply(AstExpression):
    location: Optional[SourceLocation]
    store: AstExpression
    transformer: str
    arguments: list[AstExpression]

    def eval(self, interpreter: "Interpreter") -> Union[Value, Error]:
        store = self.store.eval(interpreter)
        if isinstance(store, Error):
            return store

        # Built-in transformers take no arguments and never rebind the
        # receiver; any arguments written at the call site are not evaluated.
        builtin = BUILTIN_TRANSFORMERS.get(self.transformer)
        if builtin is not None:
            return builtin(store)

        transformer = interpreter.environment.get(self.transformer)
        if not isinstance(transformer, Transformer):
            return Error(self.location, f"Undefined transformer '{self.transformer}'")
        result = interpreter.invoke(
            transformer.parameters, transformer.body, self.arguments, applied=store
        )
        if isinstance(result, Error):
            return result
        # Applying to a bare variable writes the result back to that variable.
        if isinstance(self.store, AstExpressionVariable):
            if not interpreter.environment.assign(self.store.name, copy(result)):
                return Error(self.location, f"Undefined variable: {self.store.name}")
        return result


@final
@dataclass
class AstExpressionUse(AstExpression):
    location: Optional[SourceLocation]
    path: str

    def eval(self, interpreter: "Interpreter") -> Union[Value, Error]:
        return interpreter.include(self.location, self.path)


class Precedence(enum.IntEnum):
    # fmt: off
    LOWEST     = enum.auto()
    OR         = enum.auto()  # or
    AND        = enum.auto()  # and
    ASSIGN     = enum.auto()  # =
    EQUALITY   = enum.auto()  # == !=
    COMPARISON = enum.auto()  # < <= > >=
    TERM       = enum.auto()  # + -
    FACTOR     = enum.auto()  # * / %
    PREFIX     = enum.auto()  # -x not x
    POSTFIX    = enum.auto()  # foo(bar) foo[42] foo.bar()
    # fmt: on


class Parser:
    ParseNud = Callable[["Parser"], AstExpression]
    ParseLed = Callable[["Parser", AstExpression], AstExpression]

    PRECEDENCES: dict[TokenKind, Precedence] = {
        # fmt: off
        TokenKind.OR:                 Precedence.OR,
        TokenKind.AND:                Precedence.AND,
        TokenKind.EQUAL:              Precedence.ASSIGN,
        TokenKind.EQUAL_EQUAL:        Precedence.EQUALITY,
        TokenKind.BANG_EQUAL:         Precedence.EQUALITY,
        TokenKind.LESS_THAN:          Precedence.COMPARISON,
        TokenKind.LESS_THAN_EQUAL:    Precedence.COMPARISON,
        TokenKind.GREATER_THAN:       Precedence.COMPARISON,
        TokenKind.GREATER_THAN_EQUAL: Precedence.COMPARISON,
        TokenKind.PLUS:               Precedence.TERM,
        TokenKind.MINUS:              Precedence.TERM,
        TokenKind.MULTIPLY:           Precedence.FACTOR,
        TokenKind.DIVIDE:             Precedence.FACTOR,
        TokenKind.MODULO:             Precedence.FACTOR,
        TokenKind.LEFT_PAREN:         Precedence.POSTFIX,
        TokenKind.LEFT_BRACKET:       Precedence.POSTFIX,
        TokenKind.DOT:                Precedence.POSTFIX,
        # fmt: on
    }

    def __init__(self, tokens: Iterable[Token]):
        self.tokens: list[Token] = list(tokens)
        if len(self.tokens) == 0 or self.tokens[-1].kind != TokenKind.EOF:
            location = self.tokens[-1].location if len(self.tokens) != 0 else None
            self.tokens.append(Token(TokenKind.EOF, Lexer.EOF_LITERAL, location))
        self.position: int = 0
        self.current_token: Token = self.tokens[0]

        self.parse_nud_functions: dict[TokenKind, Parser.ParseNud] = dict()
        self.parse_led_functions: dict[TokenKind, Parser.ParseLed] = dict()

        self._register_nud(TokenKind.IDENTIFIER, Parser.parse_expression_variable)
        self._register_nud(TokenKind.NUMBER, Parser.parse_expression_number)
        self._register_nud(TokenKind.STRING, Parser.parse_expression_string)
        self._register_nud(TokenKind.TRUE, Parser.parse_expression_boolean)
        self._register_nud(TokenKind.FALSE, Parser.parse_expression_boolean)
        self._register_nud(TokenKind.LEFT_BRACKET, Parser.parse_expression_array)
        self._register_nud(TokenKind.LEFT_PAREN, Parser.parse_expression_grouped)
        self._register_nud(TokenKind.MINUS, Parser.parse_expression_prefix)
        self._register_nud(TokenKind.NOT, Parser.parse_expression_prefix)
        self._register_nud(TokenKind.RETURN, Parser.parse_return)

        self._register_led(TokenKind.OR, Parser.parse_expression_binary)
        self._register_led(TokenKind.AND, Parser.parse_expression_binary)
        self._register_led(TokenKind.EQUAL, Parser.parse_expression_assign)
        self._register_led(TokenKind.EQUAL_EQUAL, Parser.parse_expression_binary)
        self._register_led(TokenKind.BANG_EQUAL, Parser.parse_expression_binary)
        self._register_led(TokenKind.LESS_THAN, Parser.parse_expression_binary)
        self._register_led(TokenKind.LESS_THAN_EQUAL, Parser.parse_expression_binary)
        self._register_led(TokenKind.GREATER_THAN, Parser.parse_expression_binary)
        self._register_led(TokenKind.GREATER_THAN_EQUAL, Parser.parse_expression_binary)
        self._register_led(TokenKind.PLUS, Parser.parse_expression_binary)
        self._register_led(TokenKind.MINUS, Parser.parse_expression_binary)
        self._register_led(TokenKind.MULTIPLY, Parser.parse_expression_binary)
        self._register_led(TokenKind.DIVIDE, Parser.parse_expression_binary)
        self._register_led(TokenKind.MODULO, Parser.parse_expression_binary)
        self._register_led(TokenKind.LEFT_PAREN, Parser.parse_expression_call)
        self._register_led(TokenKind.LEFT_BRACKET, Parser.parse_expression_index)
        self._register_led(TokenKind.DOT, Parser.parse_expression_apply)

    def _register_nud(self, kind: TokenKind, parse: "Parser.ParseNud") -> None:
        self.parse_nud_functions[kind] = parse

    def _register_led(self, kind: TokenKind, parse: "Parser.ParseLed") -> None:
        self.parse_led_functions[kind] = parse

    def _advance_token(self) -> Token:
        current_token = self.current_token
        if self.position < len(self.tokens) - 1:
            self.position += 1
        self.current_token = self.tokens[self.position]
        return current_token

    def _check_current(self, kind: TokenKind) -> bool:
        return self.current_token.kind == kind

    def _expect_current(self, kind: TokenKind, why: str) -> Token:
        current = self.current_token
        if current.kind != kind:
            raise ParseError(current.location, why)
        self._advance_token()
        return current

    def _skip_semicolons(self) -> None:
        while self._check_current(TokenKind.SEMICOLON):
            self._advance_token()

    def parse(self) -> AstExpression:
        """
        Parse the whole token stream. A program of exactly one statement is
        returned as that statement, otherwise statements are wrapped in a
        block.
        """
        location = self.current_token.location
        statements: list[AstExpression] = list()
        self._skip_semicolons()
        while not self._check_current(TokenKind.EOF):
            statements.append(self.parse_statement())
            self._skip_semicolons()
        if len(statements) == 1:
            return statements[0]
        return AstExpressionBlock(location, statements)

    def parse_statement(self) -> AstExpression:
        if self._check_current(TokenKind.FN):
            return self.parse_function()
        if self._check_current(TokenKind.TRANSFORMER):
            return self.parse_transformer()
        if self._check_current(TokenKind.USE):
            return self.parse_use()
        if self._check_current(TokenKind.RETURN):
            return self.parse_return()
        if self._check_current(TokenKind.IF):
            return self.parse_if()
        if self._check_current(TokenKind.FOR):
            return self.parse_for()
        if self._check_current(TokenKind.WHILE):
            return self.parse_while()
        return self.parse_expression()

    def parse_body(self, open_why: str, close_why: str) -> list[AstExpression]:
        self._expect_current(TokenKind.LEFT_BRACE, open_why)
        statements: list[AstExpression] = list()
        self._skip_semicolons()
        while not self._check_current(TokenKind.RIGHT_BRACE) and not self._check_current(
            TokenKind.EOF
        ):
            statements.append(self.parse_statement())
            self._skip_semicolons()
        self._expect_current(TokenKind.RIGHT_BRACE, close_why)
        return statements

    def parse_parameters(self, why: str) -> list[str]:
        self._expect_current(TokenKind.LEFT_PAREN, why)
        parameters: list[str] = list()
        if not self._check_current(TokenKind.RIGHT_PAREN):
            while True:
                token = self._expect_current(
                    TokenKind.IDENTIFIER, "Expected parameter name"
                )
                parameters.append(token.literal)
                if not self._check_current(TokenKind.COMMA):
                    break
                self._advance_token()
        self._expect_current(TokenKind.RIGHT_PAREN, "Expected ')' after parameters")
        return parameters

    def parse_arguments(self) -> list[AstExpression]:
        self._expect_current(TokenKind.LEFT_PAREN, "Expected '('")
        arguments: list[AstExpression] = list()
        if not self._check_current(TokenKind.RIGHT_PAREN):
            while True:
                arguments.append(self.parse_expression())
                if not self._check_current(TokenKind.COMMA):
                    break
                self._advance_token()
        self._expect_current(TokenKind.RIGHT_PAREN, "Expected ')' after arguments")
        return arguments

    def parse_function(self) -> AstExpressionFunction:
        location = self._expect_current(TokenKind.FN, "Expected 'fn'").location
        name = self._expect_current(TokenKind.IDENTIFIER, "Expected function name")
        parameters = self.parse_parameters("Expected '(' after function name")
        body = self.parse_body(
            "Expected '{' before function body", "Expected '}' after function body"
        )
        return AstExpressionFunction(location, name.literal, parameters, body)

    def parse_transformer(self) -> AstExpressionTransformer:
        location = self._expect_current(
            TokenKind.TRANSFORMER, "Expected 'transformer'"
        ).location
        name = self._expect_current(TokenKind.IDENTIFIER, "Expected transformer name")
        parameters = self.parse_parameters("Expected '(' after transformer name")
        body = self.parse_body(
            "Expected '{' before transformer body",
            "Expected '}' after transformer body",
        )
        return AstExpressionTransformer(location, name.literal, parameters, body)

    def parse_use(self) -> AstExpressionUse:
        location = self._expect_current(TokenKind.USE, "Expected 'use'").location
        path = self._expect_current(
            TokenKind.STRING, "Expected string path after 'use'"
        )
        return AstExpressionUse(location, path.literal)

    def parse_return(self) -> AstExpressionReturn:
        location = self._expect_current(TokenKind.RETURN, "Expected 'return'").location
        if (
            self._check_current(TokenKind.SEMICOLON)
            or self._check_current(TokenKind.RIGHT_BRACE)
            or self._check_current(TokenKind.EOF)
        ):
            return AstExpressionReturn(location, None)
        return AstExpressionReturn(location, self.parse_statement())

    @staticmethod
    def unwrap_block(
        location: Optional[SourceLocation], body: list[AstExpression]
    ) -> AstExpression:
        if len(body) == 1:
            return body[0]
        return AstExpressionBlock(location, body)

    def parse_if(self) -> AstExpressionIf:
        location = self._expect_current(TokenKind.IF, "Expected 'if'").location
        condition = self.parse_expression()
        then_body = self.parse_body(
            "Expected '{' after if condition", "Expected '}' after then branch"
        )
        then_branch = Parser.unwrap_block(location, then_body)
        else_branch: Optional[AstExpression] = None
        if self._check_current(TokenKind.ELSE):
            else_location = self._advance_token().location
            else_body = self.parse_body(
                "Expected '{' after else", "Expected '}' after else branch"
            )
            else_branch = Parser.unwrap_block(else_location, else_body)
        return AstExpressionIf(location, condition, then_branch, else_branch)

    def parse_for(self) -> AstExpressionFor:
        location = self._expect_current(TokenKind.FOR, "Expected 'for'").location
        variable = self._expect_current(TokenKind.IDENTIFIER, "Expected variable name")
        self._expect_current(TokenKind.IN, "Expected 'in' after variable")
        iterable = self.parse_expression()
        body = self.parse_body(
            "Expected '{' after iterable", "Expected '}' after for loop body"
        )
        return AstExpressionFor(
            location, variable.literal, iterable, AstExpressionBlock(location, body)
        )

    def parse_while(self) -> AstExpressionWhile:
        location = self._expect_current(TokenKind.WHILE, "Expected 'while'").location
        condition = self.parse_expression()
        body = self.parse_body(
            "Expected '{' after while condition", "Expected '}' after while loop body"
        )
        return AstExpressionWhile(
            location, condition, AstExpressionBlock(location, body)
        )

    def parse_expression(
        self, precedence: Precedence = Precedence.LOWEST
    ) -> AstExpression:
        def get_precedence(kind: TokenKind) -> Precedence:
            return Parser.PRECEDENCES.get(kind, Precedence.LOWEST)

        parse_nud = self.parse_nud_functions.get(self.current_token.kind)
        if parse_nud is None:
            raise ParseError(self.current_token.location, "Expected expression")
        expression = parse_nud(self)
        while precedence < get_precedence(self.current_token.kind):
            parse_led = self.parse_led_functions.get(self.current_token.kind, None)
            if parse_led is None:
                return expression
            expression = parse_led(self, expression)
        return expression

    def parse_expression_variable(self) -> AstExpressionVariable:
        token = self._expect_current(TokenKind.IDENTIFIER, "Expected identifier")
        return AstExpressionVariable(token.location, token.literal)

    def parse_expression_number(self) -> AstExpressionNumber:
        token = self._expect_current(TokenKind.NUMBER, "Expected number")
        try:
            value = float(token.literal)
        except ValueError:
            raise ParseError(
                token.location, f"Invalid number literal '{token.literal}'"
            )
        return AstExpressionNumber(token.location, value)

    def parse_expression_string(self) -> AstExpressionString:
        token = self._expect_current(TokenKind.STRING, "Expected string")
        return AstExpressionString(token.location, token.literal)

    def parse_expression_boolean(self) -> AstExpressionBoolean:
        token = self._advance_token()
        return AstExpressionBoolean(token.location, token.kind == TokenKind.TRUE)

    def parse_expression_array(self) -> AstExpressionArray:
        location = self._expect_current(TokenKind.LEFT_BRACKET, "Expected '['").location
        elements: list[AstExpression] = list()
        if not self._check_current(TokenKind.RIGHT_BRACKET):
            while True:
                elements.append(self.parse_expression())
                if not self._check_current(TokenKind.COMMA):
                    break
                self._advance_token()
        self._expect_current(
            TokenKind.RIGHT_BRACKET, "Expected ']' after array elements"
        )
        return AstExpressionArray(location, elements)

    def parse_expression_grouped(self) -> AstExpression:
        self._expect_current(TokenKind.LEFT_PAREN, "Expected '('")
        expression = self.parse_expression()
        self._expect_current(TokenKind.RIGHT_PAREN, "Expected ')' after expression")
        return expression

    def parse_expression_prefix(self) -> AstExpressionUnary:
        operator = self._advance_token()
        rhs = self.parse_expression(Precedence.PREFIX)
        return AstExpressionUnary(operator.location, operator.kind, rhs)

    def parse_expression_binary(self, lhs: AstExpression) -> AstExpressionBinary:
        operator = self._advance_token()
        rhs = self.parse_expression(Parser.PRECEDENCES[operator.kind])
        return AstExpressionBinary(operator.location, lhs, operator.kind, rhs)

    def parse_expression_assign(self, lhs: AstExpression) -> AstExpressionAssign:
        token = self._expect_current(TokenKind.EQUAL, "Expected '='")
        # Right associative, and binds tighter than `and` and `or`.
        value = self.parse_expression(Precedence.AND)
        if not isinstance(lhs, AstExpressionVariable):
            raise ParseError(token.location, "Invalid assignment target")
        return AstExpressionAssign(lhs.location, lhs.name, value)

    def parse_expression_call(self, lhs: AstExpression) -> AstExpressionCall:
        location = self.current_token.location
        arguments = self.parse_arguments()
        if not isinstance(lhs, AstExpressionVariable):
            raise ParseError(location, "Expected function name")
        return AstExpressionCall(lhs.location, lhs.name, arguments)

    def parse_expression_index(self, lhs: AstExpression) -> AstExpressionIndex:
        location = self._expect_current(TokenKind.LEFT_BRACKET, "Expected '['").location
        index = self.parse_expression()
        self._expect_current(TokenKind.RIGHT_BRACKET, "Expected ']' after index")
        return AstExpressionIndex(location, lhs, index)

    def parse_expression_apply(self, lhs: AstExpression) -> AstExpressionApply:
        location = self._expect_current(TokenKind.DOT, "Expected '.'").location
        name = self._expect_current(
            TokenKind.IDENTIFIER, "Expected identifier after '.'"
        )
        if not self._check_current(TokenKind.LEFT_PAREN):
            raise ParseError(
                self.current_token.location, "Expected '(' after transformer name"
            )
        arguments = self.parse_arguments()
        return AstExpressionApply(location, lhs, name.literal, arguments)


BuiltinFunction = Callable[
    ["Interpreter", Optional[SourceLocation], list[AstExpression]],
    Union[Value, Error],
]
BUILTIN_FUNCTIONS: dict[str, BuiltinFunction] = dict()

BuiltinTransformer = Callable[[Value], Value]
BUILTIN_TRANSFORMERS: dict[str, BuiltinTransformer] = dict()


def builtin(nameof: str, count: int):
    """
    Register a built-in function taking exactly `count` arguments. Arguments
    are evaluated left to right in the caller's environment after the arity
    check succeeds.
    """

    def decorator(func: Callable[..., Union[Value, Error]]) -> BuiltinFunction:
        def function(
            interpreter: "Interpreter",
            location: Optional[SourceLocation],
            arguments: list[AstExpression],
        ) -> Union[Value, Error]:
            if len(arguments) != count:
                noun = "argument" if count == 1 else "arguments"
                return Error(location, f"{nameof}() takes exactly {count} {noun}")
            values: list[Value] = list()
            for argument in arguments:
                value = argument.eval(interpreter)
                if isinstance(value, Error):
                    return value
                values.append(value)
            return func(location, *values)

        function.__name__ = f"builtin_{func.__name__}"
        BUILTIN_FUNCTIONS[nameof] = function
        return function

    return decorator


def builtin_transformer(nameof: str):
    def decorator(func: BuiltinTransformer) -> BuiltinTransformer:
        BUILTIN_TRANSFORMERS[nameof] = func
        return func

    return decorator


@builtin("print", 1)
def builtin_print(location: Optional[SourceLocation], value: Value) -> Union[Value, Error]:
    print(value)
    return Nil()


@builtin("input", 1)
def builtin_input(
    location: Optional[SourceLocation], prompt: Value
) -> Union[Value, Error]:
    if not isinstance(prompt, String):
        return Error(location, "Argument to input() must be a string")
    sys.stdout.write(prompt.data)
    sys.stdout.flush()
    try:
        line = sys.stdin.readline()
    except OSError as e:
        return Error(location, f"Failed to read input: {e}")
    if line.endswith("\n"):
        line = line[:-1]
    if line.endswith("\r"):
        line = line[:-1]
    return String(line)


@builtin("range", 2)
def builtin_range(
    location: Optional[SourceLocation], start: Value, end: Value
) -> Union[Value, Error]:
    if not isinstance(start, Number):
        return Error(location, "First argument to range() must be a number")
    if not isinstance(end, Number):
        return Error(location, "Second argument to range() must be a number")
    return Array([Number(i) for i in range(truncate(start.data), truncate(end.data))])


@builtin_transformer("to_string")
def builtin_to_string(value: Value) -> Value:
    return String(str(value))


@builtin_transformer("to_number")
def builtin_to_number(value: Value) -> Value:
    match value:
        case Number():
            return Number(value.data)
        case String(data):
            number = parse_float(data)
            if number is not None:
                return Number(number)
            if data == "true":
                return Number(1)
            return Number(0)
        case Boolean(data):
            return Number(1 if data else 0)
    return Number(0)


@builtin_transformer("parse_number")
def builtin_parse_number(value: Value) -> Value:
    match value:
        case Number():
            return Number(value.data)
        case String(data):
            number = parse_float(data)
            return Number(number if number is not None else 0)
    return Number(0)


@builtin_transformer("to_bool")
def builtin_to_bool(value: Value) -> Value:
    match value:
        case Boolean(data):
            return Boolean(data)
        case Number(data):
            return Boolean(data != 0.0)
        case String(data):
            return Boolean(data not in ("", "false", "0"))
        case Array(elements):
            return Boolean(len(elements) != 0)
        case Function() | Transformer():
            return Boolean(True)
    return Boolean(False)


@builtin_transformer("parse_bool")
def builtin_parse_bool(value: Value) -> Value:
    if isinstance(value, String):
        return Boolean(value.data in ("true", "1", "yes"))
    return builtin_to_bool(value)


@builtin_transformer("to_array")
def builtin_to_array(value: Value) -> Value:
    if isinstance(value, Array):
        return copy(value)
    return Array([copy(value)])


def json_encode(value: Value, nested: bool = False) -> str:
    match value:
        case String(data):
            # Characters are emitted verbatim, without escaping.
            return f'"{data}"'
        case Number() | Boolean():
            return str(value)
        case Array(elements):
            # Only the outermost array is expanded.
            if nested:
                return "[...]"
            return "[" + ",".join(json_encode(x, True) for x in elements) + "]"
    return "null"


@builtin_transformer("to_json")
def builtin_to_json(value: Value) -> Value:
    return String(json_encode(value))


def builtin_environment() -> Environment:
    """
    Outermost frame of every interpreter, holding placeholder bindings for
    the built-in function names. Calls to these names are dispatched to the
    built-in implementations before any lookup takes place.
    """
    env = Environment()
    env.define("print", Function(["value"], []))
    env.define("input", Function(["prompt"], []))
    env.define("range", Function(["start", "end"], []))
    return env


class Interpreter:
    def __init__(
        self,
        base_path: Optional[Union[str, os.PathLike]] = None,
        search_paths: Optional[Iterable[Union[str, os.PathLike]]] = None,
    ):
        if sys.getrecursionlimit() < RECURSION_LIMIT:
            sys.setrecursionlimit(RECURSION_LIMIT)
        self.environment: Environment = Environment(builtin_environment())
        self.base_path: Optional[Path] = (
            Path(base_path) if base_path is not None else None
        )
        self.search_paths: list[Path] = (
            [Path(p) for p in search_paths]
            if search_paths is not None
            else [LIBRARY_ROOT]
        )
        # Paths of `use` directives already seen, exactly as written.
        self.imported_files: set[str] = set()

    def evaluate(self, expression: AstExpression) -> Union[Value, Error]:
        return expression.eval(self)

    def get_variables(self) -> dict[str, Value]:
        """
        Bindings of the innermost frame of the current environment.
        """
        return dict(self.environment.values)

    def push_frame(self) -> None:
        self.environment = Environment(copy(self.environment))

    def pop_frame(self) -> None:
        assert self.environment.enclosing is not None
        self.environment = self.environment.enclosing

    def invoke(
        self,
        parameters: list[str],
        body: list[AstExpression],
        arguments: list[AstExpression],
        applied: Optional[Value] = None,
    ) -> Union[Value, Error]:
        """
        Run a function or transformer body in a fresh frame over a snapshot of
        the current environment. Arguments are evaluated in the caller's
        environment, but only for positions that have a parameter; parameters
        without an argument are bound to nil.
        """
        env = Environment(copy(self.environment))
        if applied is not None:
            env.define(APPLIED, applied)
        for i, parameter in enumerate(parameters):
            value: Union[Value, Error] = Nil()
            if i < len(arguments):
                value = arguments[i].eval(self)
                if isinstance(value, Error):
                    return value
            env.define(parameter, value)

        previous = self.environment
        self.environment = env
        try:
            return execute_body(self, body)
        finally:
            self.environment = previous

    def resolve(self, path: str) -> Path:
        primary = self.base_path / path if self.base_path is not None else Path(path)
        if primary.exists():
            return primary
        for directory in self.search_paths:
            candidate = directory / path
            if candidate.is_file():
                return candidate
        return primary

    def include(
        self, location: Optional[SourceLocation], path: str
    ) -> Union[Value, Error]:
        if path in self.imported_files:
            return Nil()
        # Marked before reading so that cyclic includes terminate.
        self.imported_files.add(path)

        resolved = self.resolve(path)
        try:
            source = resolved.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            return Error(location, f"Failed to read file '{resolved}': {e}")

        try:
            tokens = Lexer(source, SourceLocation(str(resolved), 1)).lex()
            program = Parser(tokens).parse()
        except ParseError as e:
            return Error(location, f"Failed to parse file '{resolved}': {e}")

        base_path = self.base_path if self.base_path is not None else resolved.parent
        interpreter = Interpreter(base_path, self.search_paths)
        interpreter.environment = copy(self.environment)
        interpreter.imported_files = set(self.imported_files)
        result = interpreter.evaluate(program)
        if isinstance(result, Error):
            return Error(location, f"Error evaluating file '{resolved}': {result}")

        for name, value in interpreter.get_variables().items():
            self.environment.define(name, value)
        self.imported_files |= interpreter.imported_files
        return Nil()


def eval_source(
    source: str,
    interpreter: Optional[Interpreter] = None,
    location: Optional[SourceLocation] = None,
) -> Union[Value, Error]:
    lexer = Lexer(source, location)
    parser = Parser(lexer.lex())
    program = parser.parse()
    interpreter = interpreter or Interpreter()
    try:
        return interpreter.evaluate(program)
    except RecursionError:
        return Error(None, "maximum recursion depth exceeded")


def eval_file(
    path: Union[str, os.PathLike],
    interpreter: Optional[Interpreter] = None,
) -> Union[Value, Error]:
    with open(path, "r", encoding="utf-8") as f:
        source = f.read()
    return eval_source(source, interpreter, SourceLocation(str(path), 1))


def main() -> None:
    description = "Interpreter for the m scripting language"
    parser = ArgumentParser(description=description)
    parser.add_argument("file", type=str, nargs="?", default="main.m")
    args = parser.parse_args()

    print(f"Running file: {args.file}")
    interpreter = Interpreter(base_path=Path.cwd())
    try:
        result = eval_file(args.file, interpreter)
    except (OSError, UnicodeDecodeError) as e:
        print(f"Error reading file: {e}", file=sys.stderr)
        return
    except ParseError as e:
        print(f"Error: {e}", file=sys.stderr)
        return
    if isinstance(result, Error):
        print(f"Error: {result}", file=sys.stderr)


if __name__ == "__main__":
    main()
