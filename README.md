# yozi

`yozi` holds the pieces of a compiler for Yozi, a small statically typed
language with functions, fixed-width integers, booleans, pointers,
`if`/`else`, `while` and two development intrinsics, `#alloc` and
`#print`. It tokenizes source text, type checks a syntax tree, writes the
checked program out as LLVM IR and can hand that IR to `clang` to build a
native executable.

## Modules

- `yozi.token` – `Pos` (a zero-based `path`, `row`, `col`, printed as
  `path:row:col` counting from 1), `TokenKind`, `Token` and
  `CompileError`. Every stage raises `CompileError` when the program being
  compiled is wrong; `str(error)` gives `path:row:col: ERROR: message`,
  followed by any `NOTE:` lines (for instance where a redefined name was
  first defined). `Token.parse_integer(bits)` fills `Token.value` from
  `Token.text` and raises `CompileError` when the literal does not fit.
- `yozi.lexer` – `Lexer`, built from bytes or text (`Lexer(source, path)`)
  or from a file (`Lexer.from_file(path)`). It offers `next`, one token of
  look-ahead through `peek`, `read(kind)` and `expect(*kinds)`, iteration
  over the tokens up to end of file, and `split_and_buffer_right` for
  reading `&&` or `>>` as two tokens. Line comments start with `//`.
- `yozi.nodes` – the syntax tree (`Atom`, `Call`, `Unary`, `Binary`,
  `Debug`, `If`, `While`, `Return`, `Fn`, `Let`, `Block`) and the type
  model (`TypeKind`, `Type`, `LetKind`). Two `Type`s of kind `FN` compare
  equal when their argument and return types do.
- `yozi.checker` – `Context`, whose `check(node)` resolves names, assigns
  types and gives an untyped integer literal the integer type it is used
  as. `type_kind_is_integer` and `type_is_scalar` are the predicates it
  relies on.
- `yozi.compiler` – `llvm_format_type`, `ensure_main_function`,
  `emit_program`, which returns the program as LLVM IR text, and
  `compile_program`, which writes `<exe>.ll`, runs
  `clang -Wno-override-module -o <exe> <exe>.ll` and returns the path of
  the `.ll` file. The `.ll` file is left in place.

## Using it

The package has no dependencies of its own. `compile_program` needs
`clang` on the `PATH` and raises `CompileError` if it cannot be started
or exits with a non-zero status; `emit_program` needs nothing.

Tokenizing:

```python
from yozi.lexer import Lexer
from yozi.token import CompileError

try:
    for tok in Lexer("let x = 42u8 // answer", "example.yo"):
        print(tok.pos, tok.kind.name, tok.text, tok.value)
except CompileError as error:
    print(error)
```

Checking and emitting a program built by hand – here `fn main() { #print 42 }`:

```python
from yozi.checker import Context
from yozi.compiler import emit_program
from yozi.nodes import Atom, Block, Debug, Fn
from yozi.token import CompileError, Token, TokenKind

main = Fn(
    token=Token(TokenKind.IDENT, text="main"),
    body=Block(
        token=Token(TokenKind.LBRACE, text="{"),
        nodes=[
            Debug(
                token=Token(TokenKind.DEBUG_PRINT, text="#print"),
                operand=Atom(token=Token(TokenKind.INT, text="42", value=42)),
            )
        ],
    ),
)

context = Context()
try:
    context.check(main)
    print(emit_program(context))
except CompileError as error:
    print(error)
```

A program must define `main` as a function taking no arguments and
returning nothing; `ensure_main_function` reports anything else as a
`CompileError`. It renames `main` to `.main`, and `emit_program` prefixes
every global name with `@`, so a checked `Context` is emitted once:
`compile_program` emits it itself, so call either it or `emit_program`,
not both.

## What the package does not do

- It has no parser. Nothing here turns the token stream into a syntax
  tree; the nodes handed to `Context.check` have to be built by the
  caller.
- It has no command-line program. Compiling and running a source file is
  left to code that combines a parser with `Context` and
  `compile_program`.

## Running the tests

Install the `test` extra and run `pytest` from the project root.