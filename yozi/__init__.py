"""Lexer, type checker and LLVM IR emitter for the Yozi language."""

__version__ = "0.1.0"

__all__ = ["checker", "compiler", "lexer", "nodes", "token"]