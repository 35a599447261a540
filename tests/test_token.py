import pytest

from yozi.token import INTEGER_SUFFIXES, CompileError, Pos, Token, TokenKind


def test_pos_is_one_based_in_text():
    assert str(Pos("main.yo", 2, 4)) == "main.yo:3:5"


def test_compile_error_with_position():
    pos = Pos("f.yo", 0, 0)
    err = CompileError("boom", pos)
    assert str(err) == f"{pos}: ERROR: boom"
    assert err.message == "boom"
    assert err.pos == pos


def test_compile_error_without_position_and_with_notes():
    assert str(CompileError("boom")) == "ERROR: boom"
    first = Pos("f.yo", 1, 1)
    second = Pos("f.yo", 0, 0)
    err = CompileError("Redefinition", first, [(second, "Defined here")])
    lines = str(err).splitlines()
    assert lines == [f"{first}: ERROR: Redefinition", f"{second}: NOTE: Defined here"]


@pytest.mark.parametrize(
    "kind,label",
    [
        (TokenKind.EOF, "end of file"),
        (TokenKind.ADD, "'+'"),
        (TokenKind.IDENT, "identifier"),
        (TokenKind.DEBUG_PRINT, "'#print'"),
    ],
)
def test_labels_follow_the_name_table(kind, label):
    tok = Token(kind=kind)
    assert tok.kind.label == label
    assert not tok.is_integer()


def test_every_kind_has_a_label_matching_integer_check():
    for kind in TokenKind:
        tok = Token(kind=kind)
        assert tok.kind.label
        assert (tok.kind.label == "integer") == tok.is_integer()


@pytest.mark.parametrize(
    "kind",
    [
        TokenKind.I8, TokenKind.I16, TokenKind.I32, TokenKind.I64,
        TokenKind.U8, TokenKind.U16, TokenKind.U32, TokenKind.U64, TokenKind.INT,
    ],
)
def test_integer_kinds(kind):
    assert Token(kind=kind).is_integer()
    assert kind.label == "integer"


@pytest.mark.parametrize("kind", [TokenKind.IDENT, TokenKind.BOOL, TokenKind.EOF, TokenKind.ADD])
def test_non_integer_kinds(kind):
    assert not Token(kind=kind).is_integer()


@pytest.mark.parametrize(
    "kind,bits,text",
    [
        (TokenKind.I8, 8, "127"),
        (TokenKind.U8, 8, "255"),
        (TokenKind.U16, 16, "65535"),
        (TokenKind.INT, 64, "9223372036854775807"),
        (TokenKind.U64, 64, "18446744073709551615"),
    ],
)
def test_parse_integer_in_range(kind, bits, text):
    tok = Token(kind=kind, text=text)
    tok.parse_integer(bits)
    assert tok.value == int(text)


@pytest.mark.parametrize(
    "kind,bits,text,type_name",
    [
        (TokenKind.I8, 8, "128", "i8"),
        (TokenKind.U8, 8, "256", "u8"),
        (TokenKind.INT, 64, "18446744073709551615", "i64"),
        (TokenKind.U64, 64, "18446744073709551616", "u64"),
    ],
)
def test_parse_integer_out_of_range(kind, bits, text, type_name):
    tok = Token(kind=kind, text=text, pos=Pos("x.yo"))
    with pytest.raises(CompileError) as info:
        tok.parse_integer(bits)
    assert info.value.message == f"Integer literal '{text}' is too large for type {type_name}"
    assert info.value.pos == tok.pos


def test_parse_integer_rejects_non_digits():
    tok = Token(kind=TokenKind.U32, text="1_0")
    with pytest.raises(CompileError):
        tok.parse_integer(32)


def test_parse_integer_on_non_integer_kind():
    with pytest.raises(ValueError):
        Token(kind=TokenKind.IDENT, text="1").parse_integer(64)


def test_suffix_table_widths_match_names():
    for suffix, (kind, bits) in INTEGER_SUFFIXES.items():
        assert suffix[1:] == str(bits)
        assert kind.name == suffix.upper()