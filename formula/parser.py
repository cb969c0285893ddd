"""
Tokenizer and recursive-descent parser for the formula language.

Grammar (function names are case-insensitive):

    formula    := comparison
    comparison := additive [ (">=" | "<=" | "==" | "!=" | ">" | "<") additive ]
    additive   := term { ("+" | "-") term }
    term       := unary { ("*" | "/") unary }
    unary      := ("-" | "+") unary | primary
    primary    := NUMBER | STRING | NAME "(" [ args ] ")" | NAME | "(" formula ")"
    args       := formula { "," formula }

Strings use single or double quotes with backslash escapes. Only these
tokens are accepted, so formula text can never reach Python's eval.

Column names that are not identifiers (`net-profit`, `2024_total`) are
passed to the tokenizer, which reads them as names before any other rule.
Nesting deeper than MAX_NESTING is a syntax error.
"""

import functools
import re
from dataclasses import dataclass

from formula.expr import BinOp, Call, Compare, COMPARISONS, Const, Expr, Field, UnaryOp


class FormulaSyntaxError(ValueError):
    """Raised when formula text cannot be parsed."""

    def __init__(self, message: str, position: int):
        self.position = position
        super().__init__(f"{message} at position {position}")


@dataclass(frozen=True)
class Token:
    kind: str   # number, string, name, op, end
    text: str
    pos: int


_TOKEN_RE = re.compile(
    r"""
      (?P<ws>\s+)
    | (?P<number>\d+(?:\.\d*)?|\.\d+)
    | (?P<string>"(?:[^"\\]|\\.)*"|'(?:[^'\\]|\\.)*')
    | (?P<name>[^\W\d]\w*)
    | (?P<op>>=|<=|==|!=|[-+*/(),<>])
    """,
    re.VERBOSE,
)

_ESCAPE_RE = re.compile(r"\\(.)")
_IDENTIFIER_RE = re.compile(r"[^\W\d]\w*")

MAX_NESTING = 64


def irregular_names(names) -> tuple:
    """Names the identifier rule cannot read, longest first."""
    found = {n for n in names if isinstance(n, str) and n and not _IDENTIFIER_RE.fullmatch(n)}
    return tuple(sorted(found, key=lambda n: (-len(n), n)))


def _match_name(text: str, pos: int, names):
    for name in names:
        end = pos + len(name)
        if not text.startswith(name, pos):
            continue
        if end == len(text) or not (text[end].isalnum() or text[end] == "_"):
            return end
    return None


def tokenize(text: str, names=()) -> list:
    """Split formula text into tokens, ending with an 'end' token.

    `names` are column names read as a single name token wherever they
    occur as a whole word, in the order given.
    """
    tokens = []
    pos = 0
    while pos < len(text):
        end = _match_name(text, pos, names) if names else None
        if end is not None:
            tokens.append(Token("name", text[pos:end], pos))
            pos = end
            continue
        m = _TOKEN_RE.match(text, pos)
        if m is None:
            raise FormulaSyntaxError(f"Unexpected character {text[pos]!r}", pos)
        kind = m.lastgroup
        if kind != "ws":
            tokens.append(Token(kind, m.group(), pos))
        pos = m.end()
    tokens.append(Token("end", "", len(text)))
    return tokens


class Parser:
    """Recursive-descent parser producing an Expr tree."""

    def __init__(self, text: str, names=()):
        self.text = text
        self.tokens = tokenize(text, names)
        self.index = 0
        self.depth = 0

    # ── Token helpers ────────────────────────────────────────────────

    def _peek(self) -> Token:
        return self.tokens[self.index]

    def _next(self) -> Token:
        tok = self.tokens[self.index]
        self.index += 1
        return tok

    def _at(self, *ops) -> bool:
        tok = self._peek()
        return tok.kind == "op" and tok.text in ops

    def _expect(self, op: str) -> Token:
        tok = self._next()
        if tok.kind != "op" or tok.text != op:
            found = tok.text or "end of formula"
            raise FormulaSyntaxError(f"Expected {op!r}, found {found!r}", tok.pos)
        return tok

    def _descend(self, tok: Token) -> None:
        if self.depth >= MAX_NESTING:
            raise FormulaSyntaxError("Formula is nested too deeply", tok.pos)
        self.depth += 1

    # ── Grammar ──────────────────────────────────────────────────────

    def parse(self) -> Expr:
        node = self._comparison()
        tok = self._peek()
        if tok.kind != "end":
            raise FormulaSyntaxError(f"Unexpected {tok.text!r}", tok.pos)
        return node

    def _comparison(self) -> Expr:
        left = self._additive()
        if self._at(*COMPARISONS):
            op = self._next().text
            right = self._additive()
            return Compare(op, left, right)
        return left

    def _additive(self) -> Expr:
        node = self._term()
        while self._at("+", "-"):
            op = self._next().text
            node = BinOp(op, node, self._term())
        return node

    def _term(self) -> Expr:
        node = self._unary()
        while self._at("*", "/"):
            op = self._next().text
            node = BinOp(op, node, self._unary())
        return node

    def _unary(self) -> Expr:
        if self._at("-", "+"):
            tok = self._next()
            self._descend(tok)
            operand = self._unary()
            self.depth -= 1
            return UnaryOp("neg" if tok.text == "-" else "pos", operand)
        return self._primary()

    def _primary(self) -> Expr:
        tok = self._next()

        if tok.kind == "number":
            if "." in tok.text:
                return Const(float(tok.text))
            return Const(int(tok.text))

        if tok.kind == "string":
            return Const(_ESCAPE_RE.sub(r"\1", tok.text[1:-1]))

        if tok.kind == "name":
            if self._at("("):
                self._descend(self._next())
                args = self._arguments()
                self._expect(")")
                self.depth -= 1
                return Call(tok.text, args)
            return Field(tok.text)

        if tok.kind == "op" and tok.text == "(":
            self._descend(tok)
            node = self._comparison()
            self._expect(")")
            self.depth -= 1
            return node

        found = tok.text or "end of formula"
        raise FormulaSyntaxError(f"Unexpected {found!r}", tok.pos)

    def _arguments(self) -> list:
        if self._at(")"):
            return []
        args = [self._comparison()]
        while self._at(","):
            self._next()
            args.append(self._comparison())
        return args


@functools.lru_cache(maxsize=512)
def parse_formula(text: str, names=()) -> Expr:
    """Parse formula text into an Expr tree. Raises FormulaSyntaxError.

    `names` is a tuple of column names to read verbatim, as returned by
    irregular_names().
    """
    return Parser(text, names).parse()
