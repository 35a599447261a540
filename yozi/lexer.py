"""Turns source text into tokens with single-token lookahead."""

from __future__ import annotations

from dataclasses import replace
from pathlib import Path
from typing import Iterator

from .token import INTEGER_SUFFIXES, CompileError, Pos, Token, TokenKind

_NEWLINE = ord("\n")
_SLASH = ord("/")
_HASH = ord("#")

_KEYWORDS = {
    "as": TokenKind.AS,
    "if": TokenKind.IF,
    "else": TokenKind.ELSE,
    "while": TokenKind.WHILE,
    "return": TokenKind.RETURN,
    "fn": TokenKind.FN,
    "let": TokenKind.LET,
}

_BOOLEANS = {"true": 1, "false": 0}

_INTRINSICS = {
    "#alloc": TokenKind.DEBUG_ALLOC,
    "#print": TokenKind.DEBUG_PRINT,
}

# First character -> (kind when alone, (second character, kind) alternatives in order).
_OPERATORS: dict[int, tuple[TokenKind, tuple[tuple[int, TokenKind], ...]]] = {
    ord(first): (kind, tuple((ord(second), other) for second, other in followers))
    for first, kind, followers in [
        ("+", TokenKind.ADD, ()),
        ("-", TokenKind.SUB, ()),
        ("*", TokenKind.MUL, ()),
        ("/", TokenKind.DIV, ()),
        ("|", TokenKind.BOR, (("|", TokenKind.LOR),)),
        ("&", TokenKind.BAND, (("&", TokenKind.LAND),)),
        ("~", TokenKind.BNOT, ()),
        ("<", TokenKind.LT, (("<", TokenKind.SHL), ("=", TokenKind.LE))),
        (">", TokenKind.GT, ((">", TokenKind.SHR), ("=", TokenKind.GE))),
        ("=", TokenKind.SET, (("=", TokenKind.EQ),)),
        ("!", TokenKind.LNOT, (("=", TokenKind.NE),)),
        ("{", TokenKind.LBRACE, ()),
        ("}", TokenKind.RBRACE, ()),
        ("(", TokenKind.LPAREN, ()),
        (")", TokenKind.RPAREN, ()),
        (",", TokenKind.COMMA, ()),
    ]
}


def _is_digit(ch: int) -> bool:
    return 0x30 <= ch <= 0x39


def _is_alpha(ch: int) -> bool:
    return 0x61 <= ch <= 0x7A or 0x41 <= ch <= 0x5A


def _is_ident(ch: int) -> bool:
    return _is_alpha(ch) or _is_digit(ch) or ch == 0x5F


def _is_print(ch: int) -> bool:
    return 32 <= ch <= 126


class Lexer:
    """Tokenizer over the bytes of one source file."""

    def __init__(self, source: bytes | str, path: str = "") -> None:
        if isinstance(source, str):
            source = source.encode()
        self._data = source
        self._path = path
        self._row = 0
        self._col = 0
        self._head = 0
        self._ch = source[0] if source else 0
        self._peeked = False
        self._buffered = Token()
        self._on_newline = False

    @classmethod
    def from_file(cls, path: str | Path) -> Lexer:
        """Read ``path`` and lex its contents; raises ``OSError`` if it cannot be read."""
        return cls(Path(path).read_bytes(), str(path))

    def __iter__(self) -> Iterator[Token]:
        while (tok := self.next()).kind is not TokenKind.EOF:
            yield tok

    @property
    def _pos(self) -> Pos:
        return Pos(self._path, self._row, self._col)

    @property
    def _at_end(self) -> bool:
        return self._head >= len(self._data)

    def _slice(self, start: int) -> str:
        return self._data[start:self._head].decode("latin-1")

    def _next_char(self) -> None:
        if self._ch == _NEWLINE:
            if self._head + 1 < len(self._data):
                self._row += 1
                self._col = 0
        else:
            self._col += 1

        self._head += 1
        self._ch = self._data[self._head] if self._head < len(self._data) else 0

    def _peek_char(self, offset: int) -> int:
        index = self._head + offset
        return self._data[index] if index < len(self._data) else 0

    def _read_char(self) -> int:
        ch = self._ch
        self._next_char()
        return ch

    def _match_char(self, ch: int) -> bool:
        if self._ch == ch:
            self._next_char()
            return True
        return False

    def _skip_whitespace(self) -> None:
        while not self._at_end:
            ch = self._ch
            if ch in b" \t\r":
                self._next_char()
            elif ch == _NEWLINE:
                self._next_char()
                self._on_newline = True
            elif ch == _SLASH and self._peek_char(1) == _SLASH:
                while not self._at_end and self._ch != _NEWLINE:
                    self._next_char()
            else:
                return

    def buffer(self, tok: Token) -> None:
        """Make ``tok`` the next token returned."""
        self._peeked = True
        self._buffered = tok

    def unbuffer(self) -> None:
        self._peeked = False

    def next(self) -> Token:
        """Consume and return the next token."""
        if self._peeked:
            self.unbuffer()
            return self._buffered

        self._skip_whitespace()

        start = self._head
        tok = Token(pos=self._pos, on_newline=self._on_newline)
        self._on_newline = False

        if self._at_end:
            tok.kind = TokenKind.EOF
            return tok

        if _is_digit(self._ch):
            return self._lex_number(tok, start)

        if _is_ident(self._ch):
            return self._lex_word(tok, start)

        ch = self._read_char()
        if ch == _HASH:
            return self._lex_intrinsic(tok, start)

        try:
            kind, followers = _OPERATORS[ch]
        except KeyError:
            shown = f"'{chr(ch)}'" if _is_print(ch) else str(ch)
            raise CompileError(f"Invalid character {shown}", tok.pos) from None

        tok.kind = next(
            (other for second, other in followers if self._match_char(second)), kind
        )
        tok.text = self._slice(start)
        return tok

    def _lex_number(self, tok: Token, start: int) -> Token:
        while _is_digit(self._ch):
            self._next_char()

        bits = 64
        digits = self._slice(start)

        if self._ch in b"iu":
            suffix_pos = self._pos
            suffix_start = self._head
            self._next_char()
            while _is_digit(self._ch):
                self._next_char()

            suffix = self._slice(suffix_start)
            try:
                tok.kind, bits = INTEGER_SUFFIXES[suffix]
            except KeyError:
                raise CompileError(
                    f"Invalid suffix '{suffix}' to integer literal", suffix_pos
                ) from None
        else:
            tok.kind = TokenKind.INT

        tok.text = digits
        tok.parse_integer(bits)
        return tok

    def _lex_word(self, tok: Token, start: int) -> Token:
        while _is_ident(self._ch):
            self._next_char()

        tok.text = self._slice(start)
        if tok.text in _BOOLEANS:
            tok.kind = TokenKind.BOOL
            tok.value = _BOOLEANS[tok.text]
        else:
            tok.kind = _KEYWORDS.get(tok.text, TokenKind.IDENT)
        return tok

    def _lex_intrinsic(self, tok: Token, start: int) -> Token:
        while _is_ident(self._ch):
            self._next_char()

        tok.text = self._slice(start)
        try:
            tok.kind = _INTRINSICS[tok.text]
        except KeyError:
            raise CompileError(
                f"Invalid development intrinsic '{tok.text}'", tok.pos
            ) from None
        return tok

    def peek(self) -> Token:
        """Return the next token without consuming it."""
        if not self._peeked:
            self.buffer(self.next())
        return self._buffered

    def read(self, kind: TokenKind) -> bool:
        """Consume the next token only if it has ``kind``; report whether it did."""
        self.peek()
        self._peeked = self._buffered.kind is not kind
        return not self._peeked

    def expect(self, *kinds: TokenKind) -> Token:
        """Consume the next token, which must have one of ``kinds``."""
        tok = self.next()
        if tok.kind in kinds:
            return tok

        labels = [kind.label for kind in kinds]
        if len(labels) > 1:
            wanted = ", ".join(labels[:-1]) + " or " + labels[-1]
        else:
            wanted = "".join(labels)
        raise CompileError(f"Expected {wanted}, got {tok.kind.label}", tok.pos)

    def split_and_buffer_right(self, tok: Token) -> Token:
        """Split ``&&`` or ``>>`` in two, buffer the right half and return the left.

        Inside a type these pairs are two tokens, while the lexer reads them as one.
        """
        if tok.kind is TokenKind.LAND:
            kind, text = TokenKind.BAND, "&"
        elif tok.kind is TokenKind.SHR:
            kind, text = TokenKind.GT, ">"
        else:
            raise ValueError(f"cannot split a {tok.kind.name} token")

        left = replace(tok, kind=kind, text=text)
        right = replace(left, pos=replace(tok.pos, col=tok.pos.col + 1))
        self.buffer(right)
        return left