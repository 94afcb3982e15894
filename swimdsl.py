"""Lexer, parser and AST for the swim workout language.

    4x100m free (fast) @1:30
    { 50m kick @1:00  100m pull @1:45 }   # comments: '#', '//', '/* */'
"""
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from itertools import accumulate
from typing import Any, ClassVar, Dict, Iterator, List, Optional, Tuple, Union

from lark import Lark, Token
from lark.exceptions import UnexpectedCharacters

logger = logging.getLogger(__name__)

DEFAULT_MAX_DEPTH = 64

GRAMMAR = r"""
start: _token*
_token: NUMBER | WORD | LBRACE | RBRACE | LPAREN | RPAREN | COMMA | AT | COLON

NUMBER: /[0-9]+/
WORD: /[a-zA-Z][a-zA-Z.-]*/
LBRACE: "{"
RBRACE: "}"
LPAREN: "("
RPAREN: ")"
COMMA: ","
AT: "@"
COLON: ":"

WS: /[ \t\n\r]+/
HASH_COMMENT: /#[^\n]*/
SLASH_COMMENT: /\/\/[^\n]*/
BLOCK_COMMENT: /\/\*[\s\S]*?\*\//

%ignore WS
%ignore HASH_COMMENT
%ignore SLASH_COMMENT
%ignore BLOCK_COMMENT
"""

# Token kinds and how error messages name them. REP_OP and UNIT_SECONDS are
# never emitted by the lexer: they are the roles the parser gives to a WORD.
KINDS = {
    "NUMBER": "number", "WORD": "word",
    "LBRACE": "'{'", "RBRACE": "'}'", "LPAREN": "'('", "RPAREN": "')'",
    "COMMA": "','", "AT": "'@'", "COLON": "':'",
    "REP_OP": "'x'", "UNIT_SECONDS": "'s'", "EOF": "EOF",
}
REP_OPS = ("x", "X")
SECONDS_SUFFIX = "s"


# ---------------------------------------------------------------- errors

class WorkoutError(Exception):
    """Base for every failure raised while reading workout text."""

    label = "error"

    def __init__(self, message: str, *, text: str = "", line: int = 1, column: int = 1, offset: int = 0):
        super().__init__(message)
        self.message = message
        self.text = text
        self.line = line
        self.column = column
        self.offset = offset

    @classmethod
    def at(cls, tok: Token, message: str) -> "WorkoutError":
        return cls(message, text=tok.value, line=tok.line, column=tok.column, offset=tok.start_pos)

    def __str__(self):
        return f"{self.line}:{self.column}: {self.message}"

    def format(self, source: Optional[str] = None) -> str:
        """Render as ``<label> at L:C: msg``, plus the source line and a caret when given the source."""
        head = f"{self.label} at {self}"
        if source is None:
            return head
        # offset counts bytes; line and column count characters
        lines = source.split("\n")
        text = lines[self.line - 1].rstrip("\r") if self.line <= len(lines) else ""
        caret = " " * (self.column - 1) + "^"
        return f"{head}\n{text}\n{caret}"


class LexError(WorkoutError):
    label = "lex error"


class WorkoutSyntaxError(WorkoutError):
    label = "syntax error"


class ResourceError(WorkoutError):
    label = "resource error"


# ---------------------------------------------------------------- AST

class Unit(Enum):
    METERS = "m"
    KILOMETERS = "km"

UNITS = {u.value: u for u in Unit}


@dataclass(frozen=True)
class Distance:
    value: int
    unit: Unit


@dataclass(frozen=True)
class Stroke:
    name: str
    modifiers: Tuple[str, ...] = ()


@dataclass(frozen=True)
class Interval:
    seconds: int


@dataclass(frozen=True)
class Statement:
    kind: ClassVar[str] = "STATEMENT"
    distance: Distance
    stroke: Stroke
    interval: Interval


@dataclass(frozen=True)
class Block:
    kind: ClassVar[str] = "BLOCK"
    sets: Tuple["Set", ...]

    def __post_init__(self):
        if not self.sets:
            raise ValueError("a block holds at least one set")


@dataclass(frozen=True)
class Repetition:
    kind: ClassVar[str] = "REPETITION"
    count: int
    body: Union[Block, Statement]

    def __post_init__(self):
        if self.count < 1:
            raise ValueError(f"repetition count must be at least 1, got {self.count}")
        if not isinstance(self.body, (Block, Statement)):
            raise TypeError("a repetition body is a block or a statement")


Set = Union[Repetition, Block, Statement]


@dataclass(frozen=True)
class Workout:
    sets: Tuple[Set, ...] = ()

    def __iter__(self) -> Iterator[Set]:
        return iter(self.sets)

    def __len__(self):
        return len(self.sets)


def walk(workout: Workout) -> Iterator[Tuple[str, Set]]:
    """Yield ``(path, set)`` for every set, parents before children, in source order.

    Paths read like ``SET[2].BODY.SET[0]``.
    """
    def visit(st, path):
        yield path, st
        if isinstance(st, Repetition):
            yield from visit(st.body, f"{path}.BODY")
        elif isinstance(st, Block):
            for i, child in enumerate(st.sets):
                yield from visit(child, f"{path}.SET[{i}]")
    for i, st in enumerate(workout.sets):
        yield from visit(st, f"SET[{i}]")


# ---------------------------------------------------------------- lexer

def _position(text: str, offset: int) -> Tuple[int, int]:
    line = text.count("\n", 0, offset) + 1
    return line, offset - (text.rfind("\n", 0, offset) + 1) + 1


def _decode(data: bytes) -> str:
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError as e:
        head = data[:e.start].decode("utf-8")
        line, column = _position(head, len(head))
        raise LexError("input is not valid UTF-8", text=repr(data[e.start:e.end]),
                       line=line, column=column, offset=e.start) from e


def _byte_offsets(text: str) -> List[int]:
    """UTF-8 byte offset of every character index in ``text``, plus one past the end."""
    if text.isascii():
        return list(range(len(text) + 1))
    return [0, *accumulate(len(ch.encode("utf-8")) for ch in text)]


def tokenize(text: Union[str, bytes]) -> List[Token]:
    """Split workout text into tokens; the last one is always EOF.

    ``start_pos``/``end_pos`` are UTF-8 byte offsets; ``line``/``column``
    count characters.
    """
    if isinstance(text, bytes):
        text = _decode(text)
    at = _byte_offsets(text)
    lexer = Lark(GRAMMAR, parser="lalr", lexer="basic")
    try:
        tokens = [Token(t.type, t.value, at[t.start_pos], t.line, t.column, t.end_line, t.end_column, at[t.end_pos])
                  for t in lexer.lex(text)]
    except UnexpectedCharacters as e:
        pos = e.pos_in_stream
        if text.startswith("/*", pos):
            msg, bad = "unterminated block comment", "/*"
        else:
            msg, bad = f"unexpected character {e.char!r}", e.char
        raise LexError(msg, text=bad, line=e.line, column=e.column, offset=at[pos]) from e
    line, column = _position(text, len(text))
    tokens.append(Token("EOF", "", at[-1], line, column, line, column, at[-1]))
    logger.debug("lexed %d tokens", len(tokens))
    return tokens


# ---------------------------------------------------------------- parser

def _found(tok: Token) -> str:
    return "EOF" if tok.type == "EOF" else f"'{tok.value}'"


def _number(tok: Token) -> int:
    try:
        return int(tok.value)
    except ValueError as e:
        # interpreter limit on int(str) digits (sys.set_int_max_str_digits)
        raise ResourceError.at(tok, f"number too long: {len(tok.value)} digits") from e


class Parser:
    """Recursive-descent parser over one token list. Use once and discard."""

    def __init__(self, tokens: List[Token], *, max_depth: int = DEFAULT_MAX_DEPTH, rep_op_adjacent: bool = True):
        if max_depth < 1:
            raise ValueError(f"max_depth must be at least 1, got {max_depth}")
        if not tokens or tokens[-1].type != "EOF":
            raise ValueError("token list must end with EOF")
        self.tokens = tokens
        self.max_depth = max_depth
        self.rep_op_adjacent = rep_op_adjacent
        self.pos = 0
        self.depth = 0

    def peek(self, n: int = 0) -> Token:
        return self.tokens[min(self.pos + n, len(self.tokens) - 1)]

    def advance(self) -> Token:
        tok = self.peek()
        if tok.type != "EOF":
            self.pos += 1
        return tok

    def expect(self, kind: str, what: Optional[str] = None) -> Token:
        tok = self.peek()
        if tok.type != kind:
            raise WorkoutSyntaxError.at(tok, f"expected {what or KINDS[kind]}, found {_found(tok)}")
        return self.advance()

    def accept_suffix(self) -> bool:
        tok = self.peek()
        if tok.type == "WORD" and tok.value == SECONDS_SUFFIX:
            self.advance()
            return True
        return False

    def at_repetition(self) -> bool:
        num, op = self.peek(), self.peek(1)
        if num.type != "NUMBER" or op.type != "WORD" or op.value not in REP_OPS:
            return False
        return not self.rep_op_adjacent or num.end_pos == op.start_pos

    @contextmanager
    def nested(self, tok: Token):
        self.depth += 1
        try:
            if self.depth > self.max_depth:
                raise ResourceError.at(tok, f"sets nested deeper than {self.max_depth} levels")
            yield
        finally:
            self.depth -= 1

    # productions

    def parse_workout(self) -> Workout:
        sets = []
        while self.peek().type != "EOF":
            sets.append(self.parse_set())
        return Workout(tuple(sets))

    def parse_set(self) -> Set:
        tok = self.peek()
        with self.nested(tok):
            if tok.type == "LBRACE":
                return self.parse_block()
            if self.at_repetition():
                return self.parse_repetition()
            return self.parse_statement()

    def parse_repetition(self) -> Repetition:
        count_tok = self.expect("NUMBER", "repetition count")
        count = _number(count_tok)
        if count < 1:
            raise WorkoutSyntaxError.at(count_tok, f"repetition count must be at least 1, found '{count_tok.value}'")
        self.advance()
        tok = self.peek()
        with self.nested(tok):
            if tok.type == "LBRACE":
                body = self.parse_block()
            elif self.at_repetition():
                raise WorkoutSyntaxError.at(tok, "repetition body must be a block or a statement, found another repetition")
            else:
                body = self.parse_statement()
        return Repetition(count, body)

    def parse_block(self) -> Block:
        self.expect("LBRACE")
        if self.peek().type == "RBRACE":
            raise WorkoutSyntaxError.at(self.peek(), "empty block: a block needs at least one set")
        sets = []
        while self.peek().type != "RBRACE":
            if self.peek().type == "EOF":
                raise WorkoutSyntaxError.at(self.peek(), "expected '}', found EOF")
            sets.append(self.parse_set())
        self.advance()
        return Block(tuple(sets))

    def parse_statement(self) -> Statement:
        distance = self.parse_distance()
        stroke = self.parse_stroke()
        interval = self.parse_interval()
        return Statement(distance, stroke, interval)

    def parse_distance(self) -> Distance:
        num = self.expect("NUMBER", "distance")
        tok = self.peek()
        if tok.type == "WORD" and tok.value in UNITS:
            self.advance()
            return Distance(_number(num), UNITS[tok.value])
        if tok.type == "WORD" and tok.value in REP_OPS:
            raise WorkoutSyntaxError.at(tok, f"repetition operator '{tok.value}' must directly follow the count {num.value}")
        if tok.type in ("NUMBER", "LBRACE"):
            raise WorkoutSyntaxError.at(tok, f"missing repetition operator 'x' after {num.value}, found {_found(tok)}")
        raise WorkoutSyntaxError.at(tok, f"expected distance unit 'm' or 'km', found {_found(tok)}")

    def parse_stroke(self) -> Stroke:
        name = self.expect("WORD", "stroke name")
        modifiers = []
        if self.peek().type == "LPAREN":
            self.advance()
            modifiers.append(self.expect("WORD", "modifier").value)
            while self.peek().type == "COMMA":
                self.advance()
                modifiers.append(self.expect("WORD", "modifier").value)
            self.expect("RPAREN", "',' or ')'")
        return Stroke(name.value, tuple(modifiers))

    def parse_interval(self) -> Interval:
        self.expect("AT", "interval '@'")
        first = self.expect("NUMBER", "interval time")
        if self.peek().type == "COLON":
            self.advance()
            secs = self.expect("NUMBER", "seconds after ':'")
            self.accept_suffix()
            return Interval(_number(first) * 60 + _number(secs))
        if not self.accept_suffix():
            tok = self.peek()
            raise WorkoutSyntaxError.at(tok, f"expected 's' or ':' after interval {first.value}, found {_found(tok)}")
        return Interval(_number(first))


def parse_workout(text: Union[str, bytes], *, max_depth: int = DEFAULT_MAX_DEPTH, rep_op_adjacent: bool = True) -> Workout:
    """Parse workout text into a :class:`Workout`.

    Raises :class:`LexError`, :class:`WorkoutSyntaxError` or
    :class:`ResourceError` on the first problem found; nothing is returned
    for partially valid input.

    ``rep_op_adjacent`` controls the repetition rule: when true, ``4x`` is a
    repetition but ``4 x`` is not, because the operator must touch the count.
    """
    tokens = tokenize(text)
    parser = Parser(tokens, max_depth=max_depth, rep_op_adjacent=rep_op_adjacent)
    try:
        workout = parser.parse_workout()
    except RecursionError as e:
        raise ResourceError.at(parser.peek(), "sets nested too deeply for the interpreter stack") from e
    logger.debug("parsed %d top-level sets", len(workout))
    return workout


# ---------------------------------------------------------------- lint

def lint(workout: Workout) -> List[Dict[str, Any]]:
    """Semantic checks the grammar allows through (zero distances, zero intervals...)."""
    issues = []
    for path, st in walk(workout):
        if not isinstance(st, Statement):
            continue
        if st.distance.value == 0:
            issues.append({"level": "error", "code": "E010", "path": path, "msg": "distance must be > 0"})
        if st.interval.seconds == 0:
            issues.append({"level": "warning", "code": "W020", "path": path, "msg": "interval of 0 seconds"})
        seen = set()
        for m in st.stroke.modifiers:
            if m in seen:
                issues.append({"level": "warning", "code": "W030", "path": path,
                               "msg": f"modifier '{m}' repeated on '{st.stroke.name}'"})
            seen.add(m)
    return issues
