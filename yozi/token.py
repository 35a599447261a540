"""Tokens, source positions and compile errors."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Iterable

_UINT64_MASK = (1 << 64) - 1


class CompileError(Exception):
    """A diagnostic reported against the source being compiled."""

    def __init__(
        self,
        message: str,
        pos: Pos | None = None,
        notes: Iterable[tuple[Pos, str]] = (),
    ) -> None:
        self.message = message
        self.pos = pos
        self.notes = tuple(notes)
        super().__init__(message)

    def __str__(self) -> str:
        if self.pos is None:
            head = f"ERROR: {self.message}"
        else:
            head = f"{self.pos}: ERROR: {self.message}"
        return "\n".join([head, *(f"{pos}: NOTE: {text}" for pos, text in self.notes)])


@dataclass(frozen=True)
class Pos:
    """A zero-based location in a source file."""

    path: str = ""
    row: int = 0
    col: int = 0

    def __str__(self) -> str:
        return f"{self.path}:{self.row + 1}:{self.col + 1}"


class TokenKind(Enum):
    EOF = auto()

    I8 = auto()
    I16 = auto()
    I32 = auto()
    I64 = auto()
    U8 = auto()
    U16 = auto()
    U32 = auto()
    U64 = auto()
    INT = auto()

    BOOL = auto()
    IDENT = auto()

    ADD = auto()
    SUB = auto()
    MUL = auto()
    DIV = auto()

    SHL = auto()
    SHR = auto()
    BOR = auto()
    BAND = auto()
    BNOT = auto()

    LOR = auto()
    LAND = auto()
    LNOT = auto()

    SET = auto()

    GT = auto()
    GE = auto()
    LT = auto()
    LE = auto()
    EQ = auto()
    NE = auto()

    LBRACE = auto()
    RBRACE = auto()
    LPAREN = auto()
    RPAREN = auto()

    COMMA = auto()

    AS = auto()

    IF = auto()
    ELSE = auto()
    WHILE = auto()
    RETURN = auto()

    FN = auto()
    LET = auto()

    DEBUG_ALLOC = auto()
    DEBUG_PRINT = auto()

    @property
    def label(self) -> str:
        """The human readable name used in diagnostics."""
        return _LABELS[self]


_LABELS = {
    TokenKind.EOF: "end of file",
    TokenKind.I8: "integer",
    TokenKind.I16: "integer",
    TokenKind.I32: "integer",
    TokenKind.I64: "integer",
    TokenKind.U8: "integer",
    TokenKind.U16: "integer",
    TokenKind.U32: "integer",
    TokenKind.U64: "integer",
    TokenKind.INT: "integer",
    TokenKind.BOOL: "boolean",
    TokenKind.IDENT: "identifier",
    TokenKind.ADD: "'+'",
    TokenKind.SUB: "'-'",
    TokenKind.MUL: "'*'",
    TokenKind.DIV: "'/'",
    TokenKind.SHL: "'<<'",
    TokenKind.SHR: "'>>'",
    TokenKind.BOR: "'|'",
    TokenKind.BAND: "'&'",
    TokenKind.BNOT: "'~'",
    TokenKind.LOR: "'||'",
    TokenKind.LAND: "'&&'",
    TokenKind.LNOT: "'!'",
    TokenKind.SET: "'='",
    TokenKind.GT: "'>'",
    TokenKind.GE: "'>='",
    TokenKind.LT: "'<'",
    TokenKind.LE: "'<='",
    TokenKind.EQ: "'=='",
    TokenKind.NE: "'!='",
    TokenKind.LBRACE: "'{'",
    TokenKind.RBRACE: "'}'",
    TokenKind.LPAREN: "'('",
    TokenKind.RPAREN: "')'",
    TokenKind.COMMA: "','",
    TokenKind.AS: "'as'",
    TokenKind.IF: "'if'",
    TokenKind.ELSE: "'else'",
    TokenKind.WHILE: "'while'",
    TokenKind.RETURN: "'return'",
    TokenKind.FN: "'fn'",
    TokenKind.LET: "'let'",
    TokenKind.DEBUG_ALLOC: "'#alloc'",
    TokenKind.DEBUG_PRINT: "'#print'",
}

# Integer literal suffixes and the token kind and width they select.
INTEGER_SUFFIXES: dict[str, tuple[TokenKind, int]] = {
    "i8": (TokenKind.I8, 8),
    "i16": (TokenKind.I16, 16),
    "i32": (TokenKind.I32, 32),
    "i64": (TokenKind.I64, 64),
    "u8": (TokenKind.U8, 8),
    "u16": (TokenKind.U16, 16),
    "u32": (TokenKind.U32, 32),
    "u64": (TokenKind.U64, 64),
}

_SIGNED_KINDS = frozenset(
    {TokenKind.I8, TokenKind.I16, TokenKind.I32, TokenKind.I64, TokenKind.INT}
)
_UNSIGNED_KINDS = frozenset({TokenKind.U8, TokenKind.U16, TokenKind.U32, TokenKind.U64})
_INTEGER_KINDS = _SIGNED_KINDS | _UNSIGNED_KINDS

_SIGNED_RE = re.compile(r"[+-]?[0-9]+")
_UNSIGNED_RE = re.compile(r"[0-9]+")


@dataclass
class Token:
    """A lexical token; ``value`` holds the integer of literals and booleans."""

    kind: TokenKind = TokenKind.EOF
    pos: Pos = field(default_factory=Pos)
    text: str = ""
    on_newline: bool = False
    value: int = 0

    def is_integer(self) -> bool:
        return self.kind in _INTEGER_KINDS

    def parse_integer(self, bits: int) -> None:
        """Parse ``text`` into ``value`` as an integer of the given width."""
        if self.kind in _SIGNED_KINDS:
            signed = True
            type_name = f"i{bits}"
        elif self.kind in _UNSIGNED_KINDS:
            signed = False
            type_name = f"u{bits}"
        else:
            raise ValueError(f"cannot parse a {self.kind.name} token as an integer")

        pattern = _SIGNED_RE if signed else _UNSIGNED_RE
        if pattern.fullmatch(self.text):
            number = int(self.text)
            if signed:
                low, high = -(1 << (bits - 1)), (1 << (bits - 1)) - 1
            else:
                low, high = 0, (1 << bits) - 1
            if low <= number <= high:
                self.value = number & _UINT64_MASK
                return

        raise CompileError(
            f"Integer literal '{self.text}' is too large for type {type_name}", self.pos
        )