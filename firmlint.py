#!/usr/bin/env python3
"""
Firmlint - Naming, layout and style compliance checking for embedded C/C++

High-level goals:
- Lex firmware sources into tokens without compiling them
- Index a lightweight scope tree and symbol table per file
- Evaluate a closed catalog of independently configurable style rules
- Merge everything into one deterministic, serializable run result

The CLI, file discovery and report formatting live outside this module; they
hand us (path, bytes) pairs plus a RuleConfig and consume the RunResult.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, Iterator, List, Literal, Optional, Sequence, Set, Tuple
import bisect
import concurrent.futures
import json
import os
import re
import sys
import threading

import yaml


# ============================================================
# ================== ERRORS & VOCABULARY =====================
# ============================================================

class FirmlintError(Exception):
    """Base class for every error raised by firmlint."""


class DecodeError(FirmlintError):
    """Raised when a file's bytes cannot be decoded as source text."""


class ConfigError(FirmlintError):
    """Raised when a RuleConfig names unknown rules or carries bad values."""


Severity = Literal["error", "warning", "info"]
SEVERITIES: Tuple[str, ...] = ("error", "warning", "info")
SEVERITY_RANK: Dict[str, int] = {"error": 3, "warning": 2, "info": 1}

RunStatus = Literal["clean", "violations_found", "fatal_error"]
EXIT_CODES: Dict[str, int] = {"clean": 0, "violations_found": 1, "fatal_error": 2}

# Diagnostics produced by the pipeline itself rather than a catalog rule.
DECODE_ERROR_RULE = "DecodeError"
STRUCTURAL_ERROR_RULE = "StructuralParseError"


# ============================================================
# =============== SOURCE LOCATION & TOKENS ===================
# ============================================================

@dataclass(frozen=True)
class SourceSpan:
    file: str
    line_start: int
    col_start: int
    line_end: int
    col_end: int  # inclusive


TokenKind = Literal[
    "identifier",
    "keyword",
    "number",
    "string",
    "char",
    "operator",
    "punctuation",
    "comment",
    "preprocessor",
    "unknown",
]


@dataclass(frozen=True)
class Token:
    kind: TokenKind
    text: str
    span: SourceSpan
    offset: int  # character offset into the decoded text

    @property
    def end(self) -> int:
        return self.offset + len(self.text)

    @property
    def line(self) -> int:
        return self.span.line_start

    @property
    def column(self) -> int:
        return self.span.col_start


@dataclass(frozen=True)
class LineInfo:
    """
    Whitespace facts for one physical line. Indentation rules work from these
    rather than from tokens, since comments and blank lines carry no tokens of
    interest.
    """
    number: int
    text: str
    leading_spaces: int
    has_tab: bool
    is_blank: bool
    starts_in_comment: bool = False
    is_continuation: bool = False

    @property
    def indent(self) -> int:
        return len(self.text) - len(self.text.lstrip(" \t"))


@dataclass
class LexedFile:
    path: str
    text: str
    tokens: List[Token]
    lines: List[LineInfo]


# ============================================================
# ========================= LEXER ============================
# ============================================================

C_KEYWORDS = frozenset({
    "auto", "break", "case", "char", "const", "continue", "default", "do",
    "double", "else", "enum", "extern", "float", "for", "goto", "if", "inline",
    "int", "long", "register", "restrict", "return", "short", "signed",
    "sizeof", "static", "struct", "switch", "typedef", "union", "unsigned",
    "void", "volatile", "while", "_Bool", "_Static_assert", "_Thread_local",
    "_Alignas", "_Alignof", "_Atomic", "_Noreturn",
})

CPP_KEYWORDS = frozenset({
    "bool", "catch", "class", "constexpr", "const_cast", "decltype", "delete",
    "dynamic_cast", "explicit", "false", "friend", "mutable", "namespace",
    "new", "noexcept", "nullptr", "operator", "private", "protected", "public",
    "reinterpret_cast", "static_assert", "static_cast", "template", "this",
    "throw", "true", "try", "typename", "using", "virtual",
})

KEYWORDS = C_KEYWORDS | CPP_KEYWORDS

TYPE_KEYWORDS = frozenset({
    "void", "char", "short", "int", "long", "float", "double", "signed",
    "unsigned", "bool", "_Bool",
})

QUALIFIER_KEYWORDS = frozenset({
    "const", "volatile", "static", "extern", "register", "inline", "typedef",
    "restrict", "mutable", "constexpr", "_Thread_local", "_Atomic",
    "_Noreturn", "virtual", "explicit", "friend",
})

AGGREGATE_KEYWORDS = frozenset({"struct", "union", "enum", "class"})

# Longest first so that maximal munch falls out of a linear scan.
OPERATORS: Tuple[str, ...] = tuple(sorted({
    "<<=", ">>=", "...", "->*",
    "->", "++", "--", "<<", ">>", "<=", ">=", "==", "!=", "&&", "||",
    "+=", "-=", "*=", "/=", "%=", "&=", "|=", "^=", "::", "##", ".*",
    "+", "-", "*", "/", "%", "=", "<", ">", "!", "~", "&", "|", "^", "?",
    ":", ".", "#",
}, key=len, reverse=True))

PUNCTUATION = frozenset("{}()[];,")

STRING_PREFIXES = frozenset({"L", "u", "U", "u8"})

_IDENT_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")
_NUMBER_RE = re.compile(
    r"(?:0[xX][0-9a-fA-F']*(?:\.[0-9a-fA-F']*)?(?:[pP][+-]?[0-9]+)?"
    r"|0[bB][01']+"
    r"|(?:[0-9][0-9']*\.?[0-9']*|\.[0-9][0-9']*)(?:[eE][+-]?[0-9]+)?)"
    r"[A-Za-z_0-9]*"
)
_WHITESPACE = " \t\n\f\v"


def decode_source(content: bytes) -> str:
    """
    Decode raw file bytes as UTF-8 source and normalize newlines to '\\n'.
    Raises DecodeError for anything that is not text.
    """
    if b"\x00" in content:
        raise DecodeError("file contains NUL bytes; not a text file")
    try:
        text = content.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise DecodeError(f"not valid UTF-8 text: {exc}") from exc
    if text.startswith("\ufeff"):
        text = text[1:]
    return text.replace("\r\n", "\n").replace("\r", "\n")


class Lexer:
    """
    Tolerant C/C++ tokenizer.

    `origin` lets the lexer re-tokenize a slice of a file (a preprocessor
    directive) while reporting positions of the enclosing file. In directive
    mode '#' is an ordinary operator.
    """

    def __init__(
        self,
        text: str,
        path: str,
        *,
        origin: Tuple[int, int, int] = (0, 1, 1),
        directive: bool = False,
    ) -> None:
        self.text = text
        self.path = path
        self.directive = directive
        self._base_offset, self._base_line, self._base_col = origin
        self._line_starts = [0]
        for idx, ch in enumerate(text):
            if ch == "\n":
                self._line_starts.append(idx + 1)

    def run(self) -> LexedFile:
        tokens = self.tokenize()
        lines = [] if self.directive else self._line_facts(tokens)
        return LexedFile(path=self.path, text=self.text, tokens=tokens, lines=lines)

    def tokenize(self) -> List[Token]:
        text = self.text
        n = len(text)
        tokens: List[Token] = []
        pos = 0
        line_has_code = False

        while pos < n:
            ch = text[pos]

            if ch == "\n":
                line_has_code = False
                pos += 1
                continue
            if ch in _WHITESPACE:
                pos += 1
                continue
            if ch == "\\" and text.startswith("\n", pos + 1):
                pos += 2
                continue

            start = pos
            if text.startswith("//", pos):
                pos = self._scan_line_comment(pos)
                tokens.append(self._make("comment", start, pos))
                continue
            if text.startswith("/*", pos):
                pos = self._scan_block_comment(pos)
                tokens.append(self._make("comment", start, pos))
                line_has_code = True
                continue

            if ch == "#" and not line_has_code and not self.directive:
                pos = self._scan_directive(pos)
                tokens.append(self._make("preprocessor", start, pos))
                continue

            line_has_code = True

            if ch == '"' or ch == "'":
                pos = self._scan_quoted(pos, ch)
                tokens.append(self._make("string" if ch == '"' else "char", start, pos))
                continue

            if ch.isdigit() or (ch == "." and pos + 1 < n and text[pos + 1].isdigit()):
                match = _NUMBER_RE.match(text, pos)
                pos = match.end() if match else pos + 1
                tokens.append(self._make("number", start, pos))
                continue

            match = _IDENT_RE.match(text, pos)
            if match:
                word = match.group(0)
                pos = match.end()
                if word in STRING_PREFIXES and pos < n and text[pos] in "\"'":
                    quote = text[pos]
                    pos = self._scan_quoted(pos, quote)
                    tokens.append(self._make("string" if quote == '"' else "char", start, pos))
                    continue
                tokens.append(self._make("keyword" if word in KEYWORDS else "identifier", start, pos))
                continue

            if ch in PUNCTUATION:
                pos += 1
                tokens.append(self._make("punctuation", start, pos))
                continue

            op = self._match_operator(pos)
            if op:
                pos += len(op)
                tokens.append(self._make("operator", start, pos))
                continue

            pos += 1
            tokens.append(self._make("unknown", start, pos))

        return tokens

    # ----------------------------------------------------------
    # scanners; each returns the offset just past what it consumed
    # ----------------------------------------------------------

    def _scan_line_comment(self, pos: int) -> int:
        text = self.text
        while True:
            end = text.find("\n", pos)
            if end == -1:
                return len(text)
            # A line comment ending in a backslash swallows the next line too.
            if end > 0 and text[end - 1] == "\\":
                pos = end + 1
                continue
            return end

    def _scan_block_comment(self, pos: int) -> int:
        end = self.text.find("*/", pos + 2)
        return len(self.text) if end == -1 else end + 2

    def _scan_quoted(self, pos: int, quote: str) -> int:
        text = self.text
        n = len(text)
        pos += 1
        while pos < n:
            ch = text[pos]
            if ch == "\\":
                pos += 2
                continue
            if ch == quote:
                return pos + 1
            if ch == "\n":
                # Unterminated: stop at end of line so the next line still lexes.
                return pos
            pos += 1
        return n

    def _scan_directive(self, pos: int) -> int:
        text = self.text
        n = len(text)
        while pos < n:
            ch = text[pos]
            if ch == "\\" and text.startswith("\n", pos + 1):
                pos += 2
                continue
            if ch == "\n":
                break
            if text.startswith("//", pos):
                break
            if text.startswith("/*", pos):
                pos = self._scan_block_comment(pos)
                continue
            if ch == '"' or ch == "'":
                pos = self._scan_quoted(pos, ch)
                continue
            pos += 1
        end = pos
        while end > 0 and text[end - 1] in " \t":
            end -= 1
        return end

    def _match_operator(self, pos: int) -> Optional[str]:
        for op in OPERATORS:
            if self.text.startswith(op, pos):
                return op
        return None

    # ----------------------------------------------------------
    # positions
    # ----------------------------------------------------------

    def _position(self, offset: int) -> Tuple[int, int]:
        idx = bisect.bisect_right(self._line_starts, offset) - 1
        if idx == 0:
            return self._base_line, self._base_col + offset
        return self._base_line + idx, offset - self._line_starts[idx] + 1

    def _make(self, kind: TokenKind, start: int, end: int) -> Token:
        line_start, col_start = self._position(start)
        line_end, col_end = self._position(max(start, end - 1))
        span = SourceSpan(self.path, line_start, col_start, line_end, col_end)
        return Token(kind=kind, text=self.text[start:end], span=span, offset=self._base_offset + start)

    def _line_facts(self, tokens: List[Token]) -> List[LineInfo]:
        in_comment: Set[int] = set()
        continuation: Set[int] = set()
        for tok in tokens:
            if tok.span.line_end == tok.span.line_start:
                continue
            following = range(tok.span.line_start + 1, tok.span.line_end + 1)
            if tok.kind == "comment":
                in_comment.update(following)
            elif tok.kind in ("preprocessor", "string", "char"):
                continuation.update(following)

        lines: List[LineInfo] = []
        for number, raw in enumerate(self.text.split("\n"), start=1):
            stripped = raw.lstrip(" \t")
            leading = raw[: len(raw) - len(stripped)]
            lines.append(
                LineInfo(
                    number=number,
                    text=raw,
                    leading_spaces=leading.count(" "),
                    has_tab="\t" in leading,
                    is_blank=not stripped,
                    starts_in_comment=number in in_comment,
                    is_continuation=number in continuation,
                )
            )
        if len(lines) > 1 and lines[-1].is_blank and self.text.endswith("\n"):
            lines.pop()
        return lines


def lex_source(text: str, path: str) -> LexedFile:
    return Lexer(text, path).run()


def lex_directive(token: Token) -> List[Token]:
    """Re-tokenize a preprocessor directive token, keeping file positions."""
    origin = (token.offset, token.span.line_start, token.span.col_start)
    return Lexer(token.text, token.span.file, origin=origin, directive=True).tokenize()


# ============================================================
# ================== SCOPES & SYMBOLS ========================
# ============================================================

ScopeKind = Literal["file", "function", "block", "switch", "struct", "enum", "macro"]

SymbolKind = Literal[
    "global",
    "static",
    "local",
    "parameter",
    "constant",
    "macro_define",
    "function",
    "type",
    "enum_value",
]


@dataclass
class ScopeNode:
    """
    One record in the scope arena. Parent and children are indices into the
    owning ScopeTree; only the file root has no parent.
    """
    index: int
    kind: ScopeKind
    parent: Optional[int] = None
    children: List[int] = field(default_factory=list)
    symbols: List[int] = field(default_factory=list)

    name: Optional[str] = None
    typedef_name: Optional[str] = None  # typedef struct { ... } Name;
    keyword: Optional[str] = None       # "if", "do", "union", "define", ...

    # Token indices into IndexedFile.tokens
    keyword_token: Optional[int] = None
    header_token: Optional[int] = None  # first token of the controlling header
    name_token: Optional[int] = None
    signature_end: Optional[int] = None  # ')' closing a function's parameter list
    open_token: Optional[int] = None
    close_token: Optional[int] = None

    member_names: List[str] = field(default_factory=list)  # struct members
    labels: List[int] = field(default_factory=list)        # switch case/default tokens

    @property
    def display_name(self) -> Optional[str]:
        return self.name or self.typedef_name


class ScopeTree:
    """Arena of ScopeNodes addressed by index; node 0 is the file root."""

    def __init__(self) -> None:
        self.nodes: List[ScopeNode] = [ScopeNode(index=0, kind="file")]

    @property
    def root(self) -> ScopeNode:
        return self.nodes[0]

    def add(self, kind: ScopeKind, parent: int, **facts: Any) -> ScopeNode:
        node = ScopeNode(index=len(self.nodes), kind=kind, parent=parent, **facts)
        self.nodes.append(node)
        self.nodes[parent].children.append(node.index)
        return node

    def of_kind(self, kind: ScopeKind) -> List[ScopeNode]:
        return [node for node in self.nodes if node.kind == kind]

    def ancestors(self, index: int) -> Iterable[ScopeNode]:
        parent = self.nodes[index].parent
        while parent is not None:
            node = self.nodes[parent]
            yield node
            parent = node.parent

    def __getitem__(self, index: int) -> ScopeNode:
        return self.nodes[index]

    def __len__(self) -> int:
        return len(self.nodes)

    def __iter__(self) -> Iterator[ScopeNode]:
        return iter(self.nodes)


@dataclass(frozen=True)
class Symbol:
    name: str
    kind: SymbolKind
    scope: int
    span: SourceSpan
    declared_type: str
    token: int  # name token index (the directive token for macros)
    decl_start: int
    decl_end: int


@dataclass(frozen=True)
class ParseIssue:
    message: str
    span: SourceSpan


@dataclass(frozen=True)
class Directive:
    """A preprocessor directive re-lexed into its own tokens."""
    token: int
    name: str
    tokens: Tuple[Token, ...]
    comments: Tuple[Token, ...]
    macro_name: Optional[Token] = None
    params: Optional[Tuple[str, ...]] = None  # None for object-like macros
    body: Tuple[Token, ...] = ()


def parse_directive(index: int, token: Token) -> Directive:
    sub_tokens = lex_directive(token)
    comments = tuple(t for t in sub_tokens if t.kind == "comment")
    code = [t for t in sub_tokens if t.kind != "comment"]
    name = ""
    if len(code) > 1 and code[1].kind in ("identifier", "keyword"):
        name = code[1].text
    if name != "define" or len(code) < 3:
        return Directive(token=index, name=name, tokens=tuple(code), comments=comments)

    macro_name = code[2]
    params: Optional[Tuple[str, ...]] = None
    body_start = 3
    if len(code) > 3 and code[3].text == "(" and code[3].offset == macro_name.end:
        names: List[str] = []
        pos = 4
        while pos < len(code) and code[pos].text != ")":
            if code[pos].kind in ("identifier", "keyword") or code[pos].text == "...":
                names.append(code[pos].text)
            pos += 1
        params = tuple(names)
        body_start = pos + 1
    return Directive(
        token=index,
        name=name,
        tokens=tuple(code),
        comments=comments,
        macro_name=macro_name,
        params=params,
        body=tuple(code[body_start:]),
    )


@dataclass
class IndexedFile:
    """
    Everything the rule checkers may look at for one file. Built once by the
    StructuralIndexer and treated as read-only afterwards.
    """
    path: str
    text: str
    tokens: List[Token]
    lines: List[LineInfo]
    sig: List[int]                  # indices of non-comment, non-directive tokens
    sig_pos: Dict[int, int]         # token index -> position in sig
    matching: Dict[int, int]        # bracket token index -> partner token index
    scopes: ScopeTree
    symbols: List[Symbol]
    token_scope: List[int]          # token index -> innermost scope index
    scope_by_close: Dict[int, int]  # closing brace token index -> scope index
    directives: List[Directive]
    issues: List[ParseIssue]

    @property
    def is_structurally_sound(self) -> bool:
        return not self.issues

    @property
    def extension(self) -> str:
        return os.path.splitext(self.path)[1].lower()

    def next_sig(self, index: int) -> Optional[int]:
        pos = self.sig_pos.get(index)
        if pos is None or pos + 1 >= len(self.sig):
            return None
        return self.sig[pos + 1]

    def prev_sig(self, index: int) -> Optional[int]:
        pos = self.sig_pos.get(index)
        if pos is None or pos == 0:
            return None
        return self.sig[pos - 1]

    def scope_at(self, index: int) -> ScopeNode:
        return self.scopes[self.token_scope[index]]

    def symbols_of_kind(self, *kinds: str) -> List[Symbol]:
        found = [sym for sym in self.symbols if sym.kind in kinds]
        found.sort(key=lambda sym: (sym.span.line_start, sym.span.col_start))
        return found

    @property
    def constant_names(self) -> Set[str]:
        return {sym.name for sym in self.symbols_of_kind("constant", "macro_define", "enum_value")}

    @property
    def type_names(self) -> Set[str]:
        return {sym.name for sym in self.symbols_of_kind("type")}

    @property
    def parameter_lists(self) -> Set[int]:
        """'(' token indices opening a function's parameter list."""
        opens: Set[int] = set()
        for sym in self.symbols_of_kind("function"):
            nxt = self.next_sig(sym.token)
            if nxt is not None and self.tokens[nxt].text == "(":
                opens.add(nxt)
        return opens

    def line_text(self, number: int) -> str:
        if 1 <= number <= len(self.lines):
            return self.lines[number - 1].text
        return ""

    def directive_tokens(self) -> Iterable[Token]:
        for directive in self.directives:
            yield from directive.tokens


# ============================================================
# ================= STRUCTURAL INDEXER =======================
# ============================================================

NON_DECLARATION_KEYWORDS = frozenset({
    "return", "if", "else", "while", "for", "do", "switch", "case", "default",
    "break", "continue", "goto", "sizeof", "delete", "new", "throw", "using",
    "namespace", "template", "public", "private", "protected", "operator",
    "static_assert", "_Static_assert", "try", "catch", "this",
})

_DECLARATOR_PREFIX = frozenset({"*", "&", "&&", "const", "volatile", "restrict", "__restrict"})


@dataclass
class _Frame:
    scope: Optional[int]  # None for initializer / transparent braces
    kind: str             # effective context: a ScopeKind or "initializer"
    owner: int            # scope receiving symbols declared in this frame
    start: int            # sig position where the current statement began


class StructuralIndexer:
    """
    Builds the scope tree and symbol table for one lexed file.

    Works purely from brace/paren structure and the keywords in front of each
    '{'. Malformed structure is recorded as ParseIssues and indexing carries
    on, so the rule engine always gets whatever structure could be recovered.
    """

    def __init__(self, lexed: LexedFile) -> None:
        self.lexed = lexed
        self.tokens = lexed.tokens
        self.sig = [i for i, t in enumerate(self.tokens) if t.kind not in ("comment", "preprocessor")]
        self.sig_pos = {idx: pos for pos, idx in enumerate(self.sig)}
        self.matching: Dict[int, int] = {}
        self.scopes = ScopeTree()
        self.symbols: List[Symbol] = []
        self.issues: List[ParseIssue] = []
        self._scope_by_open: Dict[int, int] = {}
        self._scope_by_close: Dict[int, int] = {}

    def run(self) -> IndexedFile:
        self._match_brackets()
        self._build_scopes()
        token_scope = self._assign_token_scopes()
        directives = self._index_directives(token_scope)
        for node in self.scopes:
            node.children.sort(key=lambda child: self.scopes[child].open_token or 0)
        if self.tokens:
            root = self.scopes.root
            root.open_token = 0
            root.close_token = len(self.tokens) - 1
        return IndexedFile(
            path=self.lexed.path,
            text=self.lexed.text,
            tokens=self.tokens,
            lines=self.lexed.lines,
            sig=self.sig,
            sig_pos=self.sig_pos,
            matching=self.matching,
            scopes=self.scopes,
            symbols=self.symbols,
            token_scope=token_scope,
            scope_by_close=self._scope_by_close,
            directives=directives,
            issues=self.issues,
        )

    # ----------------------------------------------------------
    # bracket matching
    # ----------------------------------------------------------

    def _match_brackets(self) -> None:
        partners = {")": "(", "]": "[", "}": "{"}
        stack: List[int] = []
        for idx in self.sig:
            tok = self.tokens[idx]
            if tok.kind != "punctuation":
                continue
            if tok.text in "([{":
                stack.append(idx)
                continue
            if tok.text not in partners:
                continue
            opener = partners[tok.text]
            if not any(self.tokens[s].text == opener for s in stack):
                self._issue(f"unmatched '{tok.text}'", tok)
                continue
            while self.tokens[stack[-1]].text != opener:
                stray = stack.pop()
                self._issue(f"'{self.tokens[stray].text}' is never closed", self.tokens[stray])
            open_idx = stack.pop()
            self.matching[open_idx] = idx
            self.matching[idx] = open_idx
        for stray in stack:
            self._issue(f"'{self.tokens[stray].text}' is never closed", self.tokens[stray])

    def _issue(self, message: str, tok: Token) -> None:
        self.issues.append(ParseIssue(message=message, span=tok.span))

    # ----------------------------------------------------------
    # scope pass
    # ----------------------------------------------------------

    def _tok(self, pos: int) -> Optional[Token]:
        if 0 <= pos < len(self.sig):
            return self.tokens[self.sig[pos]]
        return None

    def _build_scopes(self) -> None:
        frames: List[_Frame] = [_Frame(scope=0, kind="file", owner=0, start=0)]
        pos = 0
        total = len(self.sig)
        while pos < total:
            idx = self.sig[pos]
            tok = self.tokens[idx]
            frame = frames[-1]
            text = tok.text

            if tok.kind == "punctuation":
                if text in "([":
                    if text == "(" and frame.kind in ("function", "block", "switch"):
                        before = self._tok(pos - 1)
                        if before is not None and before.text == "for":
                            self._for_init(idx, frame)
                    close = self.matching.get(idx)
                    pos = self.sig_pos[close] + 1 if close is not None else pos + 1
                    continue
                if text == "{":
                    self._open_brace(pos, frames)
                elif text == "}":
                    self._close_brace(pos, frames)
                elif text == ";":
                    if frame.kind not in ("initializer", "enum"):
                        self._declaration(self._collapse(frame.start, pos), frame)
                    frame.start = pos + 1
            elif text == ":" and frame.kind in ("function", "block", "switch"):
                self._label(pos, frames)
            pos += 1

        last = len(self.tokens) - 1
        for frame in frames[1:]:
            if frame.scope is not None and self.scopes[frame.scope].close_token is None:
                self.scopes[frame.scope].close_token = last

    def _collapse(self, start: int, end: int) -> List[int]:
        """Token indices of sig[start:end] with each brace group reduced to its '{'."""
        out: List[int] = []
        pos = start
        while pos < end:
            idx = self.sig[pos]
            out.append(idx)
            if self.tokens[idx].text == "{" and idx in self.matching:
                pos = self.sig_pos[self.matching[idx]] + 1
                continue
            pos += 1
        return out

    def _classify_brace(self, pos: int, frame: _Frame) -> Tuple[str, Dict[str, Any]]:
        prev = self._tok(pos - 1)
        head = list(range(frame.start, pos))
        if prev is None:
            return "block", {}
        header = self.sig[head[0]] if head else None

        if prev.text == ")":
            open_idx = self.matching.get(self.sig[pos - 1])
            if open_idx is not None:
                before_pos = self.sig_pos[open_idx] - 1
                before = self._tok(before_pos)
                if before is not None:
                    before_idx = self.sig[before_pos]
                    if before.text == "switch":
                        return "switch", {"keyword": "switch", "keyword_token": before_idx, "header_token": before_idx}
                    if before.text in ("if", "while", "for"):
                        return "block", {"keyword": before.text, "keyword_token": before_idx, "header_token": before_idx}
                    outer = [p for p in head if p < self.sig_pos[open_idx]]
                    has_assignment = any(self.tokens[self.sig[p]].text == "=" for p in outer)
                    if before.kind == "identifier" and frame.kind in ("file", "struct") and not has_assignment:
                        return "function", {
                            "name": before.text,
                            "name_token": before_idx,
                            "header_token": header if header is not None else before_idx,
                            "signature_end": self.sig[pos - 1],
                        }
            # Compound literal: x = (struct Point){1, 2};
            cut = self.sig_pos[open_idx] if open_idx is not None else pos
            if any(self.tokens[self.sig[p]].text in ("=", "return") for p in head if p < cut):
                return "initializer", {}
            return "block", {"header_token": header}

        if prev.kind == "keyword" and prev.text in ("else", "do", "try"):
            prev_idx = self.sig[pos - 1]
            return "block", {"keyword": prev.text, "keyword_token": prev_idx, "header_token": prev_idx}

        if prev.text in ("=", "return"):
            return "initializer", {}

        head_tokens = [self.tokens[self.sig[p]] for p in head]
        if any(t.text == "namespace" for t in head_tokens):
            return "transparent", {}
        if len(head_tokens) >= 2 and head_tokens[0].text == "extern" and head_tokens[1].kind == "string":
            return "transparent", {}

        for offset, t in enumerate(head_tokens):
            if t.text not in AGGREGATE_KEYWORDS:
                continue
            facts: Dict[str, Any] = {
                "keyword": t.text,
                "keyword_token": self.sig[head[offset]],
                "header_token": header,
            }
            nxt = offset + 1
            while nxt < len(head_tokens) and head_tokens[nxt].text in ("class", "struct"):
                nxt += 1
            if nxt < len(head_tokens) and head_tokens[nxt].kind == "identifier":
                facts["name"] = head_tokens[nxt].text
                facts["name_token"] = self.sig[head[nxt]]
            return ("enum" if t.text == "enum" else "struct"), facts

        return "block", {"header_token": None}

    def _open_brace(self, pos: int, frames: List[_Frame]) -> None:
        idx = self.sig[pos]
        frame = frames[-1]
        if frame.kind in ("initializer", "enum"):
            frames.append(_Frame(scope=None, kind="initializer", owner=frame.owner, start=pos + 1))
            return

        kind, facts = self._classify_brace(pos, frame)
        if kind == "initializer":
            frames.append(_Frame(scope=None, kind="initializer", owner=frame.owner, start=pos + 1))
            return
        if kind == "transparent":
            frames.append(_Frame(scope=None, kind=frame.kind, owner=frame.owner, start=pos + 1))
            return

        node = self.scopes.add(kind, frame.owner, open_token=idx, **facts)  # type: ignore[arg-type]
        self._scope_by_open[idx] = node.index

        if kind == "function" and node.name_token is not None and node.signature_end is not None:
            head_start = node.header_token if node.header_token is not None else node.name_token
            return_type = " ".join(
                self.tokens[i].text for i in self.sig[self.sig_pos[head_start]:self.sig_pos[node.name_token]]
            )
            self._add_symbol(
                node.name or "", "function", frame.owner, node.name_token,
                declared_type=return_type, decl_start=head_start, decl_end=node.signature_end,
            )
            self._add_parameters(self.matching[node.signature_end], node.signature_end, node.index)
        elif kind in ("struct", "enum") and node.name_token is not None:
            self._add_symbol(
                node.name or "", "type", frame.owner, node.name_token,
                declared_type=node.keyword or kind,
                decl_start=node.header_token if node.header_token is not None else idx,
                decl_end=idx,
            )

        frames.append(_Frame(scope=node.index, kind=kind, owner=node.index, start=pos + 1))

    def _close_brace(self, pos: int, frames: List[_Frame]) -> None:
        if len(frames) == 1:
            frames[0].start = pos + 1
            return
        frame = frames.pop()
        if frame.scope is not None:
            node = self.scopes[frame.scope]
            node.close_token = self.sig[pos]
            self._scope_by_close[node.close_token] = node.index
            if node.kind == "enum":
                self._enumerators(node)
        if frame.kind in ("function", "block", "switch", "file"):
            frames[-1].start = pos + 1

    def _label(self, pos: int, frames: List[_Frame]) -> None:
        frame = frames[-1]
        first = self._tok(frame.start) if frame.start < pos else None
        if first is None:
            return
        if first.text in ("case", "default"):
            for outer in reversed(frames):
                if outer.kind == "switch" and outer.scope is not None:
                    self.scopes[outer.scope].labels.append(self.sig[frame.start])
                    break
                if outer.kind == "function":
                    break
            frame.start = pos + 1
        elif pos - frame.start == 1 and (first.kind == "identifier" or first.text in ("public", "private", "protected")):
            frame.start = pos + 1

    def _for_init(self, open_idx: int, frame: _Frame) -> None:
        close_idx = self.matching.get(open_idx)
        if close_idx is None:
            return
        start = self.sig_pos[open_idx] + 1
        end = self.sig_pos[close_idx]
        depth = 0
        for pos in range(start, end):
            text = self.tokens[self.sig[pos]].text
            if text in "([{":
                depth += 1
            elif text in ")]}":
                depth -= 1
            elif text == ";" and depth == 0:
                self._declaration(self._collapse(start, pos), frame)
                return

    # ----------------------------------------------------------
    # declarations
    # ----------------------------------------------------------

    def _declaration(self, run: List[int], frame: _Frame) -> None:
        toks = [self.tokens[i] for i in run]
        if not toks:
            return
        first = toks[0]
        if first.text in NON_DECLARATION_KEYWORDS or first.kind not in ("identifier", "keyword"):
            return

        specs: List[Token] = []
        aggregate: Optional[int] = None
        has_type = False
        i = 0
        n = len(toks)
        while i < n:
            t = toks[i]
            if t.text in QUALIFIER_KEYWORDS or t.text in TYPE_KEYWORDS or t.text == "auto":
                has_type = has_type or t.text in TYPE_KEYWORDS or t.text == "auto"
                specs.append(t)
                i += 1
                continue
            if t.text in AGGREGATE_KEYWORDS:
                has_type = True
                specs.append(t)
                i += 1
                while i < n and toks[i].text in ("class", "struct"):
                    i += 1
                if i < n and toks[i].kind == "identifier":
                    specs.append(toks[i])
                    i += 1
                if i < n and toks[i].text == ":":
                    while i < n and toks[i].text != "{":
                        i += 1
                if i < n and toks[i].text == "{":
                    aggregate = self._scope_by_open.get(run[i])
                    i += 1
                continue
            if not has_type and t.kind == "identifier" and self._starts_user_type(toks, i):
                has_type = True
                specs.append(t)
                i += 1
                while i + 1 < n and toks[i].text == "::" and toks[i + 1].kind == "identifier":
                    specs.append(toks[i + 1])
                    i += 2
                continue
            break

        if not has_type:
            return

        for dtoks, didx in self._split_top_level(toks[i:], run[i:]):
            self._declarator(dtoks, didx, specs, frame, aggregate, run)

    def _starts_user_type(self, toks: List[Token], i: int) -> bool:
        if i + 1 >= len(toks):
            return False
        nxt = toks[i + 1]
        if nxt.kind == "identifier":
            return True
        if nxt.text == "::":
            return i + 2 < len(toks) and toks[i + 2].kind == "identifier"
        if nxt.text in ("*", "&") and i + 2 < len(toks):
            after = toks[i + 2]
            return after.kind == "identifier" or after.text in ("*", "const")
        return False

    def _split_top_level(
        self, toks: List[Token], indices: List[int]
    ) -> List[Tuple[List[Token], List[int]]]:
        groups: List[Tuple[List[Token], List[int]]] = []
        cur_toks: List[Token] = []
        cur_idx: List[int] = []
        depth = 0
        for tok, idx in zip(toks, indices):
            if tok.text in ("(", "["):
                depth += 1
            elif tok.text in (")", "]"):
                depth = max(0, depth - 1)
            elif tok.text == "," and depth == 0:
                groups.append((cur_toks, cur_idx))
                cur_toks, cur_idx = [], []
                continue
            cur_toks.append(tok)
            cur_idx.append(idx)
        if cur_toks:
            groups.append((cur_toks, cur_idx))
        return groups

    def _declarator(
        self,
        dtoks: List[Token],
        didx: List[int],
        specs: List[Token],
        frame: _Frame,
        aggregate: Optional[int],
        run: List[int],
    ) -> None:
        spec_texts = {s.text for s in specs}
        obj_const = "const" in spec_texts
        pointer = False
        j = 0
        m = len(dtoks)
        while j < m and dtoks[j].text in _DECLARATOR_PREFIX:
            if dtoks[j].text in ("*", "&", "&&"):
                pointer = True
                obj_const = False
            elif dtoks[j].text == "const":
                obj_const = True
            j += 1

        func_ptr = False
        if j + 1 < m and dtoks[j].text == "(" and dtoks[j + 1].text in ("*", "&", "^"):
            k = j + 2
            while k < m and dtoks[k].kind != "identifier" and dtoks[k].text != ")":
                k += 1
            if k >= m or dtoks[k].kind != "identifier":
                return
            name_at = k
            func_ptr = True
        elif j < m and dtoks[j].kind == "identifier":
            name_at = j
        else:
            return

        name_tok = dtoks[name_at]
        name_idx = didx[name_at]
        is_call_shape = not func_ptr and name_at + 1 < m and dtoks[name_at + 1].text == "("
        is_function = is_call_shape and frame.kind in ("file", "struct")
        declared_type = " ".join(s.text for s in specs) + (" *" if pointer else "")
        owner = frame.owner

        if "typedef" in spec_texts:
            kind = "type"
            if aggregate is not None and self.scopes[aggregate].typedef_name is None:
                self.scopes[aggregate].typedef_name = name_tok.text
        elif is_function:
            kind = "function"
        elif frame.kind == "struct":
            self.scopes[owner].member_names.append(name_tok.text)
            return
        elif obj_const and not func_ptr:
            kind = "constant"
        elif frame.kind == "file":
            kind = "static" if "static" in spec_texts else "global"
        else:
            is_static = "static" in spec_texts or name_tok.text.startswith("s_")
            kind = "static" if is_static else "local"

        # A collapsed run ends at an initializer's '{'; extend to its '}'.
        decl_end = run[-1]
        if self.tokens[decl_end].text == "{":
            decl_end = self.matching.get(decl_end, decl_end)
        self._add_symbol(
            name_tok.text, kind, owner, name_idx,
            declared_type=declared_type, decl_start=run[0], decl_end=decl_end,
        )
        if kind == "function":
            open_idx = didx[name_at + 1]
            close_idx = self.matching.get(open_idx)
            if close_idx is not None:
                self._add_parameters(open_idx, close_idx, owner)

    def _add_parameters(self, open_idx: int, close_idx: int, owner: int) -> None:
        start = self.sig_pos[open_idx] + 1
        end = self.sig_pos[close_idx]
        indices = self.sig[start:end]
        toks = [self.tokens[i] for i in indices]
        for group, gidx in self._split_top_level(toks, indices):
            texts = [t.text for t in group]
            if not group or texts in (["void"], ["..."]):
                continue
            if "=" in texts:
                cut = texts.index("=")
                group, gidx, texts = group[:cut], gidx[:cut], texts[:cut]
            name_at = self._parameter_name(group, texts)
            if name_at is None:
                continue
            declared_type = " ".join(t for k, t in enumerate(texts) if k != name_at)
            self._add_symbol(
                group[name_at].text, "parameter", owner, gidx[name_at],
                declared_type=declared_type, decl_start=gidx[0], decl_end=gidx[-1],
            )

    def _parameter_name(self, group: List[Token], texts: List[str]) -> Optional[int]:
        if "(" in texts:
            k = texts.index("(")
            if k + 1 < len(texts) and texts[k + 1] in ("*", "&", "^"):
                for at in range(k + 2, len(group)):
                    if group[at].kind == "identifier":
                        return at
                    if texts[at] == ")":
                        break
            return None
        depth = 0
        last: Optional[int] = None
        for at, tok in enumerate(group):
            if tok.text == "[":
                depth += 1
            elif tok.text == "]":
                depth -= 1
            elif depth == 0 and tok.kind == "identifier":
                last = at
        if last is None or last == 0:
            return None
        before = group[last - 1]
        if before.text in QUALIFIER_KEYWORDS or before.text in AGGREGATE_KEYWORDS:
            return None
        return last

    def _enumerators(self, node: ScopeNode) -> None:
        if node.open_token is None or node.close_token is None:
            return
        start = self.sig_pos[node.open_token] + 1
        end = self.sig_pos[node.close_token]
        indices = self.sig[start:end]
        toks = [self.tokens[i] for i in indices]
        for group, gidx in self._split_top_level(toks, indices):
            if group and group[0].kind == "identifier":
                self._add_symbol(
                    group[0].text, "enum_value", node.index, gidx[0],
                    declared_type=node.display_name or "enum",
                    decl_start=gidx[0], decl_end=gidx[-1],
                )

    def _add_symbol(
        self,
        name: str,
        kind: SymbolKind,
        scope: int,
        token: int,
        *,
        declared_type: str,
        decl_start: int,
        decl_end: int,
        span: Optional[SourceSpan] = None,
    ) -> None:
        symbol = Symbol(
            name=name,
            kind=kind,
            scope=scope,
            span=span or self.tokens[token].span,
            declared_type=declared_type,
            token=token,
            decl_start=decl_start,
            decl_end=decl_end,
        )
        self.scopes[scope].symbols.append(len(self.symbols))
        self.symbols.append(symbol)

    # ----------------------------------------------------------
    # token -> scope map and preprocessor
    # ----------------------------------------------------------

    def _assign_token_scopes(self) -> List[int]:
        token_scope = [0] * len(self.tokens)
        for node in self.scopes.nodes[1:]:
            if node.open_token is None:
                continue
            end = node.close_token if node.close_token is not None else len(self.tokens) - 1
            for i in range(node.open_token, end + 1):
                token_scope[i] = node.index
        return token_scope

    def _index_directives(self, token_scope: List[int]) -> List[Directive]:
        directives: List[Directive] = []
        for idx, tok in enumerate(self.tokens):
            if tok.kind != "preprocessor":
                continue
            directive = parse_directive(idx, tok)
            directives.append(directive)
            if directive.name != "define" or directive.macro_name is None:
                continue
            enclosing = token_scope[idx]
            self.scopes.add(
                "macro",
                enclosing,
                name=directive.macro_name.text,
                keyword="define",
                open_token=idx,
                close_token=idx,
            )
            self._add_symbol(
                directive.macro_name.text, "macro_define", enclosing, idx,
                declared_type="#define", decl_start=idx, decl_end=idx,
                span=directive.macro_name.span,
            )
        return directives


def index_source(lexed: LexedFile) -> IndexedFile:
    return StructuralIndexer(lexed).run()


# ============================================================
# ======================= RULE MODELS ========================
# ============================================================

ParameterKind = Literal["int", "bool", "str_set"]


@dataclass(frozen=True)
class RuleParameter:
    name: str
    default: Any
    kind: ParameterKind
    minimum: Optional[int] = None


@dataclass(frozen=True)
class Finding:
    """What a checker reports; the engine turns it into a Violation."""
    span: SourceSpan
    message: str
    related: Tuple[SourceSpan, ...] = ()


@dataclass(frozen=True)
class RuleDescriptor:
    """
    One entry of the closed rule catalog.

    - rule_id: stable identifier used in configuration and reports
    - title: human text
    - default_severity / default_enabled: used when RuleConfig is silent
    - parameters: tunables with their documented defaults
    - checker: (IndexedFile, params) -> findings, or (paths, params) for
               project-target rules
    - requires_structure: skip the rule when the file has structural issues
    """
    rule_id: str
    title: str
    default_severity: Severity
    checker: Callable[..., List[Finding]]
    parameters: Tuple[RuleParameter, ...] = ()
    default_enabled: bool = True
    requires_structure: bool = False
    target: Literal["file", "project"] = "file"

    def parameter(self, name: str) -> Optional[RuleParameter]:
        for param in self.parameters:
            if param.name == name:
                return param
        return None


@dataclass(frozen=True)
class Violation:
    rule_id: str
    severity: Severity
    message: str
    span: SourceSpan
    related: Tuple[SourceSpan, ...] = ()


@dataclass(frozen=True)
class FileError:
    """A file that contributed no violations, and why."""
    path: str
    reason: str


def _span_between(first: Token, last: Token) -> SourceSpan:
    return SourceSpan(
        first.span.file,
        first.span.line_start,
        first.span.col_start,
        last.span.line_end,
        last.span.col_end,
    )


def _file_span(path: str) -> SourceSpan:
    return SourceSpan(path, 1, 1, 1, 1)


# ============================================================
# ===================== NAMING CHECKERS ======================
# ============================================================

DEFAULT_ABBREVIATIONS = frozenset({
    "cnt", "tmp", "buf", "ptr", "val", "msg", "cfg", "str", "idx", "len", "addr", "ctx",
})

DEFAULT_ACRONYMS = frozenset({
    "ADC", "CAN", "CRC", "DMA", "GPIO", "I2C", "ID", "IO", "IRQ", "ISR", "LED",
    "PWM", "RAM", "ROM", "RTC", "SPI", "UART", "USB",
})

_UPPER_SNAKE_RE = re.compile(r"^[A-Z][A-Z0-9]*(?:_[A-Z0-9]+)*$")

_NAMING_STYLES: Dict[str, Tuple["re.Pattern[str]", str]] = {
    "pascal": (re.compile(r"^[A-Z][A-Za-z0-9]*$"), "PascalCase"),
    "camel": (re.compile(r"^[a-z][A-Za-z0-9]*$"), "lowerCamelCase"),
    "global": (re.compile(r"^g_[a-z][A-Za-z0-9]*$"), "'g_' followed by lowerCamelCase"),
    "static": (re.compile(r"^s_[a-z][A-Za-z0-9]*$"), "'s_' followed by lowerCamelCase"),
    "upper": (_UPPER_SNAKE_RE, "UPPER_SNAKE_CASE"),
    "macro": (re.compile(r"^_?[A-Z][A-Z0-9]*(?:_[A-Z0-9]+)*$"), "UPPER_SNAKE_CASE"),
}

# Splits "readGPIOPinCnt" into read / GPIO / Pin / Cnt.
_CAMEL_SEGMENT_RE = re.compile(r"[A-Z]{2,}(?=[A-Z][a-z]|[^A-Za-z]|$)|[A-Z]?[a-z]+|[A-Z]|[0-9]+")
_UPPER_RUN_RE = re.compile(r"[A-Z][A-Z0-9]*")


def _name_core(name: str) -> str:
    if name[:2] in ("g_", "s_"):
        name = name[2:]
    return name.strip("_")


def name_segments(name: str) -> List[str]:
    segments: List[str] = []
    for part in _name_core(name).split("_"):
        segments.extend(_CAMEL_SEGMENT_RE.findall(part))
    return segments


def uppercase_runs(name: str) -> List[str]:
    """Runs of two or more capitals, minus the capital that starts the next word."""
    core = _name_core(name)
    runs: List[str] = []
    for match in _UPPER_RUN_RE.finditer(core):
        run = match.group(0)
        if match.end() < len(core) and core[match.end()].islower():
            run = run[:-1]
        run = run.rstrip("0123456789")
        if sum(1 for ch in run if ch.isupper()) >= 2:
            runs.append(run)
    return runs


def naming_problems(name: str, style: str, params: Dict[str, Any]) -> List[str]:
    pattern, label = _NAMING_STYLES[style]
    acronyms = {a.upper() for a in params.get("acronyms", DEFAULT_ACRONYMS)}
    abbreviations = {a.lower() for a in params.get("abbreviations", DEFAULT_ABBREVIATIONS)}

    problems: List[str] = []
    if not pattern.match(name):
        problems.append(f"does not follow {label}")
    if style not in ("upper", "macro"):
        unlisted = sorted({run for run in uppercase_runs(name) if run not in acronyms})
        if unlisted:
            problems.append("contains uppercase run(s) not in the acronym list: " + ", ".join(unlisted))
    blacklisted = sorted({
        seg for seg in name_segments(name)
        if seg.lower() in abbreviations and seg.upper() not in acronyms
    })
    if blacklisted:
        problems.append("uses abbreviation(s): " + ", ".join(blacklisted))
    return problems


def _naming_checker(kind: SymbolKind, style: str, noun: str) -> Callable[[IndexedFile, Dict[str, Any]], List[Finding]]:
    def check(indexed: IndexedFile, params: Dict[str, Any]) -> List[Finding]:
        exempt = set(params.get("exempt", ()))
        findings: List[Finding] = []
        seen: Set[str] = set()
        for sym in indexed.symbols_of_kind(kind):
            if sym.name in seen or sym.name in exempt:
                continue
            seen.add(sym.name)
            problems = naming_problems(sym.name, style, params)
            if problems:
                findings.append(Finding(sym.span, f"{noun} '{sym.name}' " + "; ".join(problems)))
        return findings

    check.__name__ = f"check_{kind}_naming"
    return check


def check_enum_wrapper(indexed: IndexedFile, params: Dict[str, Any]) -> List[Finding]:
    """
    Enums live inside a struct whose name they share, and the struct holds
    the enum value in a member literally called 'Value'.
    """
    findings: List[Finding] = []
    scopes = indexed.scopes
    for node in scopes.of_kind("enum"):
        anchor_idx = node.keyword_token if node.keyword_token is not None else node.open_token
        if anchor_idx is None:
            continue
        anchor = indexed.tokens[anchor_idx]
        label = f"enum '{node.display_name}'" if node.display_name else "anonymous enum"
        parent = scopes[node.parent] if node.parent is not None else None

        if parent is None or parent.kind != "struct":
            findings.append(Finding(anchor.span, f"{label} is not wrapped in a struct"))
            continue

        wrapper = parent.display_name
        if node.name and wrapper and node.name_token is not None and not node.name.startswith(wrapper):
            findings.append(Finding(
                indexed.tokens[node.name_token].span,
                f"{label} does not match the name of its wrapping struct '{wrapper}'",
            ))
        if "Value" not in parent.member_names:
            for sym_index in node.symbols:
                sym = indexed.symbols[sym_index]
                findings.append(Finding(
                    sym.span,
                    f"enum value '{sym.name}' is wrapped by a struct without a 'Value' member",
                ))
    return findings


# ============================================================
# ================== FILE PAIRING (PROJECT) ==================
# ============================================================

DEFAULT_SOURCE_EXTENSIONS = frozenset({".c", ".cc", ".cpp", ".cxx"})
DEFAULT_HEADER_EXTENSIONS = frozenset({".h", ".hh", ".hpp", ".hxx"})


def _normalize_extensions(values: Iterable[str]) -> Set[str]:
    return {"." + value.lower().lstrip(".") for value in values}


def check_file_pairing(paths: Sequence[str], params: Dict[str, Any]) -> List[Finding]:
    """Post-pass over path strings only; no file contents are involved."""
    source_exts = _normalize_extensions(params["source_extensions"])
    header_exts = _normalize_extensions(params["header_extensions"])
    exempt = {stem.lower() for stem in params["exempt_stems"]}

    groups: Dict[Tuple[str, str], Dict[str, List[str]]] = {}
    for path in sorted(set(paths)):
        directory, base = os.path.split(path)
        stem, ext = os.path.splitext(base)
        ext = ext.lower()
        if ext in source_exts:
            role = "source"
        elif ext in header_exts:
            role = "header"
        else:
            continue
        group = groups.setdefault((directory, stem.lower()), {"source": [], "header": []})
        group[role].append(path)

    def stem_of(path: str) -> str:
        return os.path.splitext(os.path.basename(path))[0]

    findings: List[Finding] = []
    for key in sorted(groups):
        members = groups[key]
        headers = members["header"]
        for source in members["source"]:
            stem = stem_of(source)
            if headers:
                if any(stem_of(header) == stem for header in headers):
                    continue
                header = headers[0]
                findings.append(Finding(
                    _file_span(source),
                    f"source '{os.path.basename(source)}' and header "
                    f"'{os.path.basename(header)}' differ in their base names",
                    related=(_file_span(header),),
                ))
            elif params["require_header"] and stem.lower() not in exempt:
                findings.append(Finding(
                    _file_span(source),
                    f"source '{os.path.basename(source)}' has no matching header file",
                ))
    return findings


# ============================================================
# ===================== LAYOUT CHECKERS ======================
# ============================================================

def _lines_inside_parens(indexed: IndexedFile) -> Set[int]:
    covered: Set[int] = set()
    for open_idx, close_idx in indexed.matching.items():
        opener = indexed.tokens[open_idx]
        if close_idx < open_idx or opener.text not in ("(", "["):
            continue
        covered.update(range(opener.line + 1, indexed.tokens[close_idx].line + 1))
    return covered


def check_indentation(indexed: IndexedFile, params: Dict[str, Any]) -> List[Finding]:
    width = params["width"]
    wrapped = _lines_inside_parens(indexed)
    findings: List[Finding] = []
    for info in indexed.lines:
        if info.is_blank or info.starts_in_comment or info.is_continuation or info.number in wrapped:
            continue
        indent = info.indent
        if indent == 0:
            continue
        span = SourceSpan(indexed.path, info.number, 1, info.number, indent)
        if info.has_tab:
            findings.append(Finding(span, "tab character used for indentation"))
        elif info.leading_spaces % width:
            findings.append(Finding(
                span,
                f"indentation of {info.leading_spaces} spaces is not a multiple of {width}",
            ))
    return findings


def check_brace_placement(indexed: IndexedFile, params: Dict[str, Any]) -> List[Finding]:
    findings: List[Finding] = []
    for node in indexed.scopes:
        if node.kind in ("file", "macro") or node.open_token is None:
            continue
        brace = indexed.tokens[node.open_token]
        line = indexed.lines[brace.line - 1]
        if brace.column != line.indent + 1:
            findings.append(Finding(brace.span, "opening brace must start a new line"))
            continue
        if node.header_token is None:
            continue
        header_line = indexed.lines[indexed.tokens[node.header_token].line - 1]
        if line.indent != header_line.indent:
            findings.append(Finding(
                brace.span,
                f"opening brace is indented {line.indent} columns but its statement is "
                f"indented {header_line.indent}",
            ))
    return findings


def _is_do_while(indexed: IndexedFile, idx: int) -> bool:
    prev = indexed.prev_sig(idx)
    if prev is None or indexed.tokens[prev].text != "}":
        return False
    scope = indexed.scope_by_close.get(prev)
    return scope is not None and indexed.scopes[scope].keyword == "do"


def check_always_brace(indexed: IndexedFile, params: Dict[str, Any]) -> List[Finding]:
    tokens = indexed.tokens
    findings: List[Finding] = []
    for idx in indexed.sig:
        tok = tokens[idx]
        if tok.kind != "keyword":
            continue
        if tok.text in ("if", "for", "while"):
            paren = indexed.next_sig(idx)
            if paren is None or tokens[paren].text != "(" or paren not in indexed.matching:
                continue
            if tok.text == "while" and _is_do_while(indexed, idx):
                continue
            body = indexed.next_sig(indexed.matching[paren])
            allowed: Tuple[str, ...] = ("{",)
        elif tok.text == "else":
            body = indexed.next_sig(idx)
            allowed = ("{", "if")
        elif tok.text == "do":
            body = indexed.next_sig(idx)
            allowed = ("{",)
        else:
            continue
        if body is not None and tokens[body].text not in allowed:
            findings.append(Finding(tok.span, f"'{tok.text}' body must be enclosed in braces"))
    return findings


def check_line_length(indexed: IndexedFile, params: Dict[str, Any]) -> List[Finding]:
    limit = params["max_length"]
    findings: List[Finding] = []
    for info in indexed.lines:
        length = len(info.text)
        if length > limit:
            findings.append(Finding(
                SourceSpan(indexed.path, info.number, limit + 1, info.number, length),
                f"line is {length} characters long (maximum {limit})",
            ))
    return findings


SPACED_OPERATORS = frozenset({
    "=", "==", "!=", "<", ">", "<=", ">=", "+", "-", "*", "/", "%", "&&", "||",
    "&", "|", "^", "<<", ">>", "+=", "-=", "*=", "/=", "%=", "&=", "|=", "^=",
    "<<=", ">>=",
})

_OPERAND_KEYWORDS = frozenset({"true", "false", "nullptr", "this"})
_NOT_CAST_KEYWORDS = frozenset({"sizeof", "if", "while", "for", "switch", "_Alignof", "decltype"})


def _is_type_like(tok: Token, type_names: Set[str]) -> bool:
    text = tok.text
    return (
        text in TYPE_KEYWORDS
        or text in QUALIFIER_KEYWORDS
        or text in AGGREGATE_KEYWORDS
        or text in type_names
        or (tok.kind == "identifier" and text.endswith("_t"))
    )


def _is_cast(indexed: IndexedFile, close_idx: int, type_names: Set[str]) -> bool:
    open_idx = indexed.matching.get(close_idx)
    if open_idx is None or open_idx > close_idx:
        return False
    before = indexed.prev_sig(open_idx)
    if before is not None:
        btok = indexed.tokens[before]
        if btok.kind == "identifier" or btok.text in (")", "]") or btok.text in _NOT_CAST_KEYWORDS:
            return False
    inner = indexed.sig[indexed.sig_pos[open_idx] + 1:indexed.sig_pos[close_idx]]
    if not inner:
        return False
    saw_type = False
    for i in inner:
        tok = indexed.tokens[i]
        if _is_type_like(tok, type_names):
            saw_type = True
        elif tok.text not in ("*", "&"):
            return False
    return saw_type


def _ends_operand(indexed: IndexedFile, idx: int, type_names: Set[str]) -> bool:
    tok = indexed.tokens[idx]
    if tok.kind in ("identifier", "number", "string", "char"):
        return True
    if tok.kind == "keyword":
        return tok.text in _OPERAND_KEYWORDS
    if tok.text == "]":
        return True
    if tok.text == ")":
        return not _is_cast(indexed, idx, type_names)
    return False


def _enclosing_paren(indexed: IndexedFile, pos: int) -> Optional[int]:
    """Token index of the unclosed '(' containing sig position `pos`, if any."""
    depth = 0
    for back in range(pos - 1, -1, -1):
        text = indexed.tokens[indexed.sig[back]].text
        if text in (")", "]", "}"):
            depth += 1
        elif text in ("(", "["):
            if depth == 0:
                return indexed.sig[back] if text == "(" else None
            depth -= 1
        elif text == "{":
            if depth == 0:
                return None
            depth -= 1
        elif text == ";" and depth == 0:
            return None
    return None


def _in_declaration_list(indexed: IndexedFile, pos: int, parameter_lists: Set[int]) -> bool:
    """True when sig position `pos` sits in a parameter list or a for-init head."""
    open_idx = _enclosing_paren(indexed, pos)
    if open_idx is None:
        return False
    if open_idx in parameter_lists:
        return True
    before = indexed.prev_sig(open_idx)
    # for (Type *p = ...) and the trailing list of void (*cb)(Type *p)
    return before is not None and indexed.tokens[before].text in ("for", ")")


def _is_declarator(indexed: IndexedFile, pos: int, type_names: Set[str], parameter_lists: Set[int]) -> bool:
    """True when the '*' or '&' at sig position `pos` belongs to a declaration."""
    sig = indexed.sig
    tokens = indexed.tokens
    prev = tokens[sig[pos - 1]]
    nxt = tokens[sig[pos + 1]] if pos + 1 < len(sig) else None
    if nxt is None or nxt.text in (")", ",", "*", "&", ">"):
        return True
    if _is_type_like(prev, type_names):
        return True
    if prev.kind == "identifier":
        before = tokens[sig[pos - 2]] if pos >= 2 else None
        if before is None or before.text in (";", "{", "}", "::"):
            return True
        if before.text in ("(", ","):
            return _in_declaration_list(indexed, pos, parameter_lists)
        if before.text in QUALIFIER_KEYWORDS or before.text in AGGREGATE_KEYWORDS:
            return True
    return False


def check_operator_spacing(indexed: IndexedFile, params: Dict[str, Any]) -> List[Finding]:
    tokens = indexed.tokens
    text = indexed.text
    type_names = indexed.type_names
    parameter_lists = indexed.parameter_lists
    findings: List[Finding] = []

    def gap_ok(gap: str) -> bool:
        return gap == " " or "\n" in gap

    for pos, idx in enumerate(indexed.sig):
        tok = tokens[idx]
        if tok.kind != "operator" or tok.text not in SPACED_OPERATORS or pos == 0:
            continue
        if not _ends_operand(indexed, indexed.sig[pos - 1], type_names):
            continue
        if tok.text in ("*", "&") and _is_declarator(indexed, pos, type_names, parameter_lists):
            continue
        if idx + 1 >= len(tokens):
            continue
        left = text[tokens[idx - 1].end:tok.offset]
        right = text[tok.end:tokens[idx + 1].offset]
        if not (gap_ok(left) and gap_ok(right)):
            findings.append(Finding(
                tok.span,
                f"binary operator '{tok.text}' must be surrounded by single spaces",
            ))
    return findings


def _number_tokens(indexed: IndexedFile) -> List[Token]:
    found = [tok for tok in indexed.tokens if tok.kind == "number"]
    found.extend(tok for tok in indexed.directive_tokens() if tok.kind == "number")
    return found


_HEX_LITERAL_RE = re.compile(r"0([xX])([0-9A-Fa-f']*)")


def check_hex_literal_case(indexed: IndexedFile, params: Dict[str, Any]) -> List[Finding]:
    findings: List[Finding] = []
    for tok in _number_tokens(indexed):
        match = _HEX_LITERAL_RE.match(tok.text)
        if not match:
            continue
        problems = []
        if match.group(1) == "X":
            problems.append("uppercase '0X' prefix")
        if any(ch in "abcdef" for ch in match.group(2)):
            problems.append("lowercase hex digits")
        if problems:
            findings.append(Finding(tok.span, f"hex literal '{tok.text}' uses " + " and ".join(problems)))
    return findings


_INTEGER_SUFFIX_RE = re.compile(r"[uUlL]+$")


def check_long_suffix_case(indexed: IndexedFile, params: Dict[str, Any]) -> List[Finding]:
    findings: List[Finding] = []
    for tok in _number_tokens(indexed):
        match = _INTEGER_SUFFIX_RE.search(tok.text)
        if match and "l" in match.group(0):
            findings.append(Finding(tok.span, f"literal '{tok.text}' uses a lowercase 'l' suffix; use 'L'"))
    return findings


# ============================================================
# ====================== MISC CHECKERS =======================
# ============================================================

def check_comment_style(indexed: IndexedFile, params: Dict[str, Any]) -> List[Finding]:
    if params["allow_block_comments"]:
        return []
    comments = [tok for tok in indexed.tokens if tok.kind == "comment"]
    for directive in indexed.directives:
        comments.extend(directive.comments)
    return [
        Finding(tok.span, "block comment; use '//' comments")
        for tok in comments
        if tok.text.startswith("/*")
    ]


def check_single_return(indexed: IndexedFile, params: Dict[str, Any]) -> List[Finding]:
    limit = params["max_returns"]
    tokens = indexed.tokens
    findings: List[Finding] = []
    for node in indexed.scopes.of_kind("function"):
        if node.open_token is None or node.close_token is None:
            continue
        returns = [
            i for i in range(node.open_token, node.close_token + 1)
            if tokens[i].kind == "keyword" and tokens[i].text == "return"
        ]
        if len(returns) <= limit:
            continue
        first = node.header_token if node.header_token is not None else node.open_token
        last = node.signature_end if node.signature_end is not None else first
        findings.append(Finding(
            _span_between(tokens[first], tokens[last]),
            f"function '{node.name}' has {len(returns)} return statements (maximum {limit})",
            related=tuple(tokens[i].span for i in returns),
        ))
    return findings


_LITERAL_KEYWORDS = frozenset({"true", "false", "nullptr"})


def check_yoda_comparison(indexed: IndexedFile, params: Dict[str, Any]) -> List[Finding]:
    """
    'speed == MAX_SPEED' must be written 'MAX_SPEED == speed' so that a typo
    of '=' fails to compile.
    """
    tokens = indexed.tokens
    constants = indexed.constant_names

    def constant_like(tok: Token) -> bool:
        return tok.kind == "identifier" and (tok.text in constants or bool(_UPPER_SNAKE_RE.match(tok.text)))

    findings: List[Finding] = []
    for idx in indexed.sig:
        op = tokens[idx]
        if op.kind != "operator" or op.text not in ("==", "!="):
            continue
        left_idx = indexed.prev_sig(idx)
        right_idx = indexed.next_sig(idx)
        if left_idx is None or right_idx is None:
            continue
        left = tokens[left_idx]
        if left.kind != "identifier" or constant_like(left):
            continue

        right = tokens[right_idx]
        last = right_idx
        if right.text == "-":
            nxt = indexed.next_sig(right_idx)
            if nxt is None or tokens[nxt].kind != "number":
                continue
            last = nxt
        elif not (
            right.kind in ("number", "char", "string")
            or right.text in _LITERAL_KEYWORDS
            or right.text == "NULL"
            or constant_like(right)
        ):
            continue

        after = indexed.next_sig(last)
        if after is not None and tokens[after].text in ("(", "[", ".", "->"):
            continue
        findings.append(Finding(
            _span_between(left, tokens[last]),
            f"comparison '{left.text} {op.text} ...' should place the constant on the left",
        ))
    return findings


def check_switch_default(indexed: IndexedFile, params: Dict[str, Any]) -> List[Finding]:
    findings: List[Finding] = []
    for node in indexed.scopes.of_kind("switch"):
        if any(indexed.tokens[label].text == "default" for label in node.labels):
            continue
        anchor = node.keyword_token if node.keyword_token is not None else node.open_token
        if anchor is not None:
            findings.append(Finding(indexed.tokens[anchor].span, "switch statement has no 'default' label"))
    return findings


def _top_level_operators(body: Sequence[Token]) -> List[Token]:
    depth = 0
    found: List[Token] = []
    for tok in body:
        if tok.text in ("(", "["):
            depth += 1
        elif tok.text in (")", "]"):
            depth -= 1
        elif depth == 0 and tok.kind == "operator" and tok.text not in ("#", "##"):
            found.append(tok)
    return found


def _fully_wrapped(body: Sequence[Token]) -> bool:
    if not body or body[0].text != "(":
        return False
    depth = 0
    for pos, tok in enumerate(body):
        if tok.text == "(":
            depth += 1
        elif tok.text == ")":
            depth -= 1
            if depth == 0:
                return pos == len(body) - 1
    return False


def check_macro_parameters(indexed: IndexedFile, params: Dict[str, Any]) -> List[Finding]:
    findings: List[Finding] = []
    for directive in indexed.directives:
        if directive.params is None or not directive.body or directive.macro_name is None:
            continue
        body = directive.body
        names = {p for p in directive.params if p != "..."}
        offender: Optional[Tuple[Token, str]] = None

        for pos, tok in enumerate(body):
            if tok.text in ("++", "--"):
                offender = (tok, f"uses '{tok.text}'")
                break
            if tok.kind not in ("identifier", "keyword") or tok.text not in names:
                continue
            prev = body[pos - 1] if pos > 0 else None
            nxt = body[pos + 1] if pos + 1 < len(body) else None
            if (prev is not None and prev.text in ("#", "##")) or (nxt is not None and nxt.text == "##"):
                continue
            if prev is None or nxt is None or prev.text != "(" or nxt.text != ")":
                offender = (tok, f"parameter '{tok.text}' is not parenthesized")
                break

        if offender is None and body[0].text not in ("do", "{"):
            if _top_level_operators(body) and not _fully_wrapped(body):
                offender = (body[0], "expression body is not enclosed in parentheses")

        if offender is not None:
            tok, reason = offender
            findings.append(Finding(tok.span, f"macro '{directive.macro_name.text}': {reason}"))
    return findings


def numeric_value(text: str) -> Optional[Any]:
    """Numeric value of a C literal, so 0x10, 020 and 16 compare equal."""
    lowered = text.replace("'", "").lower()
    match = re.fullmatch(r"0x([0-9a-f]+)[ul]*", lowered)
    if match:
        return int(match.group(1), 16)
    match = re.fullmatch(r"0b([01]+)[ul]*", lowered)
    if match:
        return int(match.group(1), 2)
    match = re.fullmatch(r"([0-9]+)[ul]*", lowered)
    if match:
        digits = match.group(1)
        if len(digits) > 1 and digits.startswith("0"):
            return int(digits, 8) if set(digits) <= set("01234567") else None
        return int(digits)
    match = re.fullmatch(r"((?:[0-9]+\.?[0-9]*|\.[0-9]+)(?:e[+-]?[0-9]+)?)[fl]?", lowered)
    if match:
        value = float(match.group(1))
        return int(value) if value.is_integer() else value
    return None


def check_magic_numbers(indexed: IndexedFile, params: Dict[str, Any]) -> List[Finding]:
    allowed = {numeric_value(text) for text in params["allowed"]}
    threshold = params["min_occurrences"]
    tokens = indexed.tokens

    bound: Set[int] = set()
    for sym in indexed.symbols_of_kind("constant"):
        bound.update(range(sym.decl_start, sym.decl_end + 1))

    occurrences: Dict[Any, List[Token]] = {}
    for idx, tok in enumerate(tokens):
        if tok.kind != "number" or idx in bound:
            continue
        if indexed.scope_at(idx).kind == "enum":
            continue
        value = numeric_value(tok.text)
        if value is None or value in allowed:
            continue
        occurrences.setdefault(value, []).append(tok)

    findings: List[Finding] = []
    for value, seen in occurrences.items():
        if len(seen) < threshold:
            continue
        first = seen[0]
        findings.append(Finding(
            first.span,
            f"magic number '{first.text}' appears {len(seen)} times; bind it to a named constant",
            related=tuple(tok.span for tok in seen[1:]),
        ))
    return findings


def expected_guard_name(path: str) -> str:
    return "_" + re.sub(r"[^A-Za-z0-9]", "_", os.path.basename(path)).upper()


def _guard_token(directive: Directive) -> Optional[Token]:
    toks = directive.tokens
    if directive.name == "ifndef":
        if len(toks) > 2 and toks[2].kind == "identifier":
            return toks[2]
        return None
    if directive.name == "if":
        texts = [t.text for t in toks[2:]]
        if len(texts) >= 3 and texts[0] == "!" and texts[1] == "defined":
            name_at = 5 if texts[2] == "(" else 4
            if name_at < len(toks) and toks[name_at].kind == "identifier":
                return toks[name_at]
    return None


def check_header_guard(indexed: IndexedFile, params: Dict[str, Any]) -> List[Finding]:
    if indexed.extension not in _normalize_extensions(params["header_extensions"]):
        return []
    directives = indexed.directives
    if params["allow_pragma_once"]:
        for directive in directives:
            if directive.name == "pragma" and len(directive.tokens) > 2 and directive.tokens[2].text == "once":
                return []

    expected = expected_guard_name(indexed.path)
    guard: Optional[Token] = None
    if directives:
        first = directives[0]
        code_before = indexed.sig and indexed.sig[0] < first.token
        candidate = None if code_before else _guard_token(first)
        if candidate is not None and len(directives) > 1:
            define = directives[1]
            if define.name == "define" and define.macro_name is not None and define.macro_name.text == candidate.text:
                guard = candidate

    if guard is None:
        return [Finding(_file_span(indexed.path), f"header has no include guard; expected '#ifndef {expected}'")]
    if guard.text != expected:
        return [Finding(guard.span, f"include guard '{guard.text}' should be named '{expected}'")]
    return []


def check_dynamic_allocation(indexed: IndexedFile, params: Dict[str, Any]) -> List[Finding]:
    banned = set(params["identifiers"])
    tokens = indexed.tokens
    findings: List[Finding] = []
    for idx in indexed.sig:
        tok = tokens[idx]
        if tok.text not in banned:
            continue
        prev = indexed.prev_sig(idx)
        prev_text = tokens[prev].text if prev is not None else ""
        if tok.kind == "identifier":
            nxt = indexed.next_sig(idx)
            if nxt is None or tokens[nxt].text != "(" or prev_text in (".", "->"):
                continue
        elif tok.kind == "keyword" and tok.text in ("new", "delete"):
            if prev_text == "operator" or (tok.text == "delete" and prev_text == "="):
                continue
        else:
            continue
        findings.append(Finding(tok.span, f"dynamic memory allocation via '{tok.text}' is not allowed"))
    return findings


# ============================================================
# ======================= RULE CATALOG =======================
# ============================================================

def _naming_parameters(*extra: RuleParameter) -> Tuple[RuleParameter, ...]:
    return (
        RuleParameter("abbreviations", DEFAULT_ABBREVIATIONS, "str_set"),
        RuleParameter("acronyms", DEFAULT_ACRONYMS, "str_set"),
    ) + extra


def _build_catalog() -> Dict[str, RuleDescriptor]:
    naming = [
        ("FunctionNamingPattern", "Function names are PascalCase", "function", "pascal", "function",
         (RuleParameter("exempt", frozenset({"main"}), "str_set"),)),
        ("TypeNamingPattern", "Type names are PascalCase", "type", "pascal", "type", ()),
        ("GlobalNamingPattern", "Globals are g_ + lowerCamelCase", "global", "global", "global", ()),
        ("StaticNamingPattern", "Statics are s_ + lowerCamelCase", "static", "static", "static", ()),
        ("LocalNamingPattern", "Locals are lowerCamelCase", "local", "camel", "local", ()),
        ("ParameterNamingPattern", "Parameters are lowerCamelCase", "parameter", "camel", "parameter", ()),
        ("ConstantNamingPattern", "Constants are UPPER_SNAKE_CASE", "constant", "upper", "constant", ()),
        ("MacroNamingPattern", "Macros are UPPER_SNAKE_CASE", "macro_define", "macro", "macro", ()),
        ("EnumValueNamingPattern", "Enum values are UPPER_SNAKE_CASE", "enum_value", "upper", "enum value", ()),
    ]
    rules: List[RuleDescriptor] = [
        RuleDescriptor(
            rule_id=rule_id,
            title=title,
            default_severity="error",
            checker=_naming_checker(kind, style, noun),  # type: ignore[arg-type]
            parameters=_naming_parameters(*extra),
            requires_structure=True,
        )
        for rule_id, title, kind, style, noun, extra in naming
    ]
    rules += [
        RuleDescriptor(
            "EnumWrapper", "Enums are wrapped in a struct with a 'Value' member", "error",
            check_enum_wrapper, requires_structure=True,
        ),
        RuleDescriptor(
            "FilePairing", "Every source file has a header with the same base name", "warning",
            check_file_pairing,
            parameters=(
                RuleParameter("source_extensions", DEFAULT_SOURCE_EXTENSIONS, "str_set"),
                RuleParameter("header_extensions", DEFAULT_HEADER_EXTENSIONS, "str_set"),
                RuleParameter("require_header", True, "bool"),
                RuleParameter("exempt_stems", frozenset({"main"}), "str_set"),
            ),
            target="project",
        ),
        RuleDescriptor(
            "IndentationWidth", "Indentation uses multiples of the configured width, no tabs", "warning",
            check_indentation, parameters=(RuleParameter("width", 3, "int", minimum=1),),
        ),
        RuleDescriptor(
            "BracePlacement", "Opening braces start their own line at the statement's indentation", "warning",
            check_brace_placement, requires_structure=True,
        ),
        RuleDescriptor(
            "AlwaysBrace", "Controlled statements are always enclosed in braces", "error",
            check_always_brace,
        ),
        RuleDescriptor(
            "LineLength", "Lines do not exceed the configured length", "warning",
            check_line_length, parameters=(RuleParameter("max_length", 100, "int", minimum=1),),
        ),
        RuleDescriptor(
            "OperatorSpacing", "Binary operators are surrounded by single spaces", "info",
            check_operator_spacing,
        ),
        RuleDescriptor(
            "HexLiteralCase", "Hex literals use a lowercase '0x' and uppercase digits", "warning",
            check_hex_literal_case,
        ),
        RuleDescriptor(
            "LongSuffixCase", "Long literal suffixes use an uppercase 'L'", "warning",
            check_long_suffix_case,
        ),
        RuleDescriptor(
            "CommentStyle", "Comments use '//'", "info",
            check_comment_style, parameters=(RuleParameter("allow_block_comments", False, "bool"),),
        ),
        RuleDescriptor(
            "SingleReturnPath", "Functions have a single return statement", "warning",
            check_single_return,
            parameters=(RuleParameter("max_returns", 1, "int", minimum=1),),
            requires_structure=True,
        ),
        RuleDescriptor(
            "YodaComparison", "Equality comparisons put the constant on the left", "warning",
            check_yoda_comparison,
        ),
        RuleDescriptor(
            "SwitchDefaultRequired", "Every switch has a default label", "error",
            check_switch_default, requires_structure=True,
        ),
        RuleDescriptor(
            "MacroParameterParenthesization", "Macro parameters and bodies are parenthesized", "error",
            check_macro_parameters,
        ),
        RuleDescriptor(
            "MagicNumber", "Repeated numeric literals are bound to named constants", "info",
            check_magic_numbers,
            parameters=(
                RuleParameter("min_occurrences", 2, "int", minimum=2),
                RuleParameter("allowed", frozenset({"0", "1"}), "str_set"),
            ),
            requires_structure=True,
        ),
        RuleDescriptor(
            "HeaderGuard", "Headers carry an include guard named after the file", "error",
            check_header_guard,
            parameters=(
                RuleParameter("header_extensions", DEFAULT_HEADER_EXTENSIONS, "str_set"),
                RuleParameter("allow_pragma_once", True, "bool"),
            ),
        ),
        RuleDescriptor(
            "DynamicAllocation", "No dynamic memory allocation", "error",
            check_dynamic_allocation,
            parameters=(
                RuleParameter(
                    "identifiers",
                    frozenset({"malloc", "calloc", "realloc", "free", "new", "delete"}),
                    "str_set",
                ),
            ),
        ),
    ]
    return {rule.rule_id: rule for rule in rules}


RULE_CATALOG: Dict[str, RuleDescriptor] = _build_catalog()


def describe_rules() -> List[Dict[str, Any]]:
    """Catalog summary for front ends (rule listing, default config dumps)."""
    described = []
    for rule in RULE_CATALOG.values():
        described.append({
            "rule_id": rule.rule_id,
            "title": rule.title,
            "default_severity": rule.default_severity,
            "default_enabled": rule.default_enabled,
            "target": rule.target,
            "requires_structure": rule.requires_structure,
            "parameters": {
                param.name: sorted(param.default) if param.kind == "str_set" else param.default
                for param in rule.parameters
            },
        })
    return described


# ============================================================
# ====================== CONFIGURATION =======================
# ============================================================

@dataclass(frozen=True)
class RuleOverride:
    enabled: Optional[bool] = None
    severity: Optional[str] = None
    parameters: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ResolvedRule:
    descriptor: RuleDescriptor
    enabled: bool
    severity: Severity
    params: Dict[str, Any]

    @property
    def rule_id(self) -> str:
        return self.descriptor.rule_id


def _coerce_parameter(rule_id: str, param: RuleParameter, value: Any) -> Any:
    where = f"{rule_id}.{param.name}"
    if param.kind == "bool":
        if not isinstance(value, bool):
            raise ConfigError(f"{where} must be a boolean, got {value!r}")
        return value
    if param.kind == "int":
        if isinstance(value, bool) or not isinstance(value, int):
            raise ConfigError(f"{where} must be an integer, got {value!r}")
        if param.minimum is not None and value < param.minimum:
            raise ConfigError(f"{where} must be at least {param.minimum}, got {value}")
        return value
    if isinstance(value, str) or not isinstance(value, (list, tuple, set, frozenset)):
        raise ConfigError(f"{where} must be a list of strings, got {value!r}")
    if not all(isinstance(item, str) for item in value):
        raise ConfigError(f"{where} must contain only strings")
    return frozenset(value)


@dataclass
class RuleConfig:
    """
    Rule id -> override. Rules not mentioned run with their catalog
    defaults. Built by the caller; the engine only reads it.
    """
    rules: Dict[str, RuleOverride] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, data: Optional[Dict[str, Any]]) -> "RuleConfig":
        if data is None:
            return cls()
        if not isinstance(data, dict):
            raise ConfigError("rule configuration must be a mapping")
        unknown_keys = set(data) - {"rules"}
        if unknown_keys:
            raise ConfigError(f"unknown configuration key(s): {sorted(unknown_keys)}")
        raw_rules = data.get("rules") or {}
        if not isinstance(raw_rules, dict):
            raise ConfigError("'rules' must map rule ids to settings")

        rules: Dict[str, RuleOverride] = {}
        for rule_id, raw in raw_rules.items():
            if raw is None:
                raw = {}
            if not isinstance(raw, dict):
                raise ConfigError(f"settings for rule '{rule_id}' must be a mapping")
            settings = dict(raw)
            severity = settings.pop("severity", None)
            rules[str(rule_id)] = RuleOverride(
                enabled=settings.pop("enabled", None),
                severity=severity.lower() if isinstance(severity, str) else severity,
                parameters=settings,
            )
        config = cls(rules=rules)
        config.validate()
        return config

    def validate(self) -> None:
        for rule_id, override in self.rules.items():
            descriptor = RULE_CATALOG.get(rule_id)
            if descriptor is None:
                raise ConfigError(f"unknown rule id '{rule_id}'")
            if override.enabled is not None and not isinstance(override.enabled, bool):
                raise ConfigError(f"{rule_id}.enabled must be a boolean, got {override.enabled!r}")
            if override.severity is not None and override.severity not in SEVERITIES:
                raise ConfigError(
                    f"{rule_id}.severity must be one of {', '.join(SEVERITIES)}, got {override.severity!r}"
                )
            for name, value in override.parameters.items():
                param = descriptor.parameter(name)
                if param is None:
                    raise ConfigError(f"rule '{rule_id}' has no parameter '{name}'")
                _coerce_parameter(rule_id, param, value)

    def resolve(self, rule_id: str) -> ResolvedRule:
        descriptor = RULE_CATALOG[rule_id]
        override = self.rules.get(rule_id, RuleOverride())
        params = {param.name: param.default for param in descriptor.parameters}
        for name, value in override.parameters.items():
            param = descriptor.parameter(name)
            if param is None:
                raise ConfigError(f"rule '{rule_id}' has no parameter '{name}'")
            params[name] = _coerce_parameter(rule_id, param, value)
        return ResolvedRule(
            descriptor=descriptor,
            enabled=descriptor.default_enabled if override.enabled is None else override.enabled,
            severity=override.severity or descriptor.default_severity,  # type: ignore[arg-type]
            params=params,
        )


def rule_config_from_yaml(text: str) -> RuleConfig:
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigError(f"invalid YAML in rule configuration: {exc}") from exc
    return RuleConfig.from_mapping(data)


def load_rule_config(path: str) -> RuleConfig:
    try:
        with open(path, "r", encoding="utf-8") as handle:
            text = handle.read()
    except OSError as exc:
        raise ConfigError(f"could not read rule configuration {path}: {exc}") from exc
    return rule_config_from_yaml(text)


# ============================================================
# ======================= RULE ENGINE ========================
# ============================================================

_ALLOW_RE = re.compile(r"@ALLOW\(([^)]*)\)")


def inline_suppressions(indexed: IndexedFile) -> Dict[int, Set[str]]:
    """
    Line number -> rule ids silenced by '@ALLOW(RuleA, RuleB)' comments. A
    comment alone on its line also covers the line after it.
    """
    comments = [tok for tok in indexed.tokens if tok.kind == "comment"]
    for directive in indexed.directives:
        comments.extend(directive.comments)

    allowed: Dict[int, Set[str]] = {}
    for tok in comments:
        for match in _ALLOW_RE.finditer(tok.text):
            rule_ids = {part.strip() for part in match.group(1).split(",") if part.strip()}
            lines = [tok.span.line_start]
            if tok.span.col_start == indexed.lines[tok.line - 1].indent + 1:
                lines.append(tok.span.line_end + 1)
            for number in lines:
                allowed.setdefault(number, set()).update(rule_ids)
    return allowed


@dataclass
class FileReport:
    path: str
    violations: List[Violation] = field(default_factory=list)
    error: Optional[FileError] = None


class RuleEngine:
    """
    The RuleEngine will:
    - resolve the RuleConfig against the catalog once, up front
    - take one file's bytes through decode -> lex -> index
    - run every enabled checker independently over the indexed file
    - attach rule id and configured severity to each finding
    """

    def __init__(self, config: Optional[RuleConfig] = None) -> None:
        self.config = config or RuleConfig()
        self.config.validate()
        self.rules: List[ResolvedRule] = [self.config.resolve(rule_id) for rule_id in RULE_CATALOG]
        self._failure_reported: Set[Tuple[str, str]] = set()
        self._lock = threading.Lock()

    def check_source(self, path: str, content: bytes) -> FileReport:
        try:
            text = decode_source(content)
        except DecodeError as exc:
            return FileReport(
                path=path,
                violations=[Violation(DECODE_ERROR_RULE, "error", str(exc), _file_span(path))],
                error=FileError(path, str(exc)),
            )
        indexed = index_source(lex_source(text, path))
        return FileReport(path=path, violations=self.check_indexed(indexed))

    def check_indexed(self, indexed: IndexedFile) -> List[Violation]:
        violations = [
            Violation(STRUCTURAL_ERROR_RULE, "error", issue.message, issue.span)
            for issue in indexed.issues
        ]
        suppressed = inline_suppressions(indexed)
        for rule in self.rules:
            if not rule.enabled or rule.descriptor.target != "file":
                continue
            if rule.descriptor.requires_structure and not indexed.is_structurally_sound:
                continue
            for finding in self._run_checker(rule, indexed, indexed.path):
                if rule.rule_id in suppressed.get(finding.span.line_start, ()):
                    continue
                violations.append(self._violation(rule, finding))
        return violations

    def check_project(self, paths: Sequence[str]) -> List[Violation]:
        violations: List[Violation] = []
        for rule in self.rules:
            if not rule.enabled or rule.descriptor.target != "project":
                continue
            for finding in self._run_checker(rule, list(paths), "<project>"):
                violations.append(self._violation(rule, finding))
        return violations

    def _violation(self, rule: ResolvedRule, finding: Finding) -> Violation:
        return Violation(
            rule_id=rule.rule_id,
            severity=rule.severity,
            message=finding.message,
            span=finding.span,
            related=finding.related,
        )

    def _run_checker(self, rule: ResolvedRule, subject: Any, path: str) -> List[Finding]:
        try:
            return list(rule.descriptor.checker(subject, rule.params))
        except Exception as exc:  # pragma: no cover - safeguard
            self._report_checker_failure(rule.rule_id, path, exc)
            return []

    def _report_checker_failure(self, rule_id: str, path: str, exc: Exception) -> None:
        key = (rule_id, path)
        with self._lock:
            if key in self._failure_reported:
                return
            self._failure_reported.add(key)
        sys.stderr.write(f"[firmlint] Rule '{rule_id}' failed on {path}; skipping it ({exc}).\n")


# ============================================================
# ================= AGGREGATION & REPORTING ==================
# ============================================================

@dataclass
class RunResult:
    violations: List[Violation]
    fatal_errors: List[FileError]
    counts: Dict[str, int]
    worst_severity: Optional[Severity]
    status: RunStatus
    files_checked: int = 0

    @property
    def exit_code(self) -> int:
        return EXIT_CODES[self.status]


def violation_sort_key(violation: Violation) -> Tuple[Any, ...]:
    span = violation.span
    return (
        span.file,
        span.line_start,
        span.col_start,
        violation.rule_id,
        span.line_end,
        span.col_end,
        violation.message,
    )


def aggregate(
    reports: Iterable[FileReport],
    extra_violations: Iterable[Violation] = (),
    extra_errors: Iterable[FileError] = (),
) -> RunResult:
    """Merge per-file reports into one sorted, deduplicated RunResult."""
    collected: List[Violation] = list(extra_violations)
    errors: List[FileError] = list(extra_errors)
    files_checked = 0
    for report in reports:
        collected.extend(report.violations)
        if report.error is not None:
            errors.append(report.error)
        else:
            files_checked += 1

    violations: List[Violation] = []
    seen: Set[Tuple[str, SourceSpan]] = set()
    for violation in sorted(collected, key=violation_sort_key):
        key = (violation.rule_id, violation.span)
        if key in seen:
            continue
        seen.add(key)
        violations.append(violation)

    counts = {severity: 0 for severity in SEVERITIES}
    for violation in violations:
        counts[violation.severity] += 1
    worst = max((v.severity for v in violations), key=SEVERITY_RANK.__getitem__, default=None)

    errors.sort(key=lambda err: (err.path, err.reason))
    if errors:
        status: RunStatus = "fatal_error"
    elif violations:
        status = "violations_found"
    else:
        status = "clean"
    return RunResult(
        violations=violations,
        fatal_errors=errors,
        counts=counts,
        worst_severity=worst,  # type: ignore[arg-type]
        status=status,
        files_checked=files_checked,
    )


def violation_to_row(violation: Violation) -> Tuple[str, int, int, str, str, str]:
    span = violation.span
    return (span.file, span.line_start, span.col_start, violation.rule_id, violation.severity, violation.message)


def _span_to_json_obj(span: SourceSpan) -> Dict[str, Any]:
    return {
        "file": span.file,
        "line_start": span.line_start,
        "col_start": span.col_start,
        "line_end": span.line_end,
        "col_end": span.col_end,
    }


def violation_to_json_obj(violation: Violation) -> Dict[str, Any]:
    return {
        "rule_id": violation.rule_id,
        "severity": violation.severity,
        "message": violation.message,
        "location": _span_to_json_obj(violation.span),
        "related": [_span_to_json_obj(span) for span in violation.related],
    }


def run_result_to_json_obj(result: RunResult) -> Dict[str, Any]:
    return {
        "status": result.status,
        "exit_code": result.exit_code,
        "files_checked": result.files_checked,
        "worst_severity": result.worst_severity,
        "counts": dict(result.counts),
        "violations": [violation_to_json_obj(v) for v in result.violations],
        "fatal_errors": [{"path": err.path, "reason": err.reason} for err in result.fatal_errors],
    }


def run_result_to_json(result: RunResult, indent: Optional[int] = 2) -> str:
    return json.dumps(run_result_to_json_obj(result), indent=indent, sort_keys=True)


# ============================================================
# ===================== RUN ORCHESTRATION ====================
# ============================================================

@dataclass(frozen=True)
class SourceInput:
    """(path, bytes) handed in by the caller; content is None if unreadable."""
    path: str
    content: Optional[bytes]
    error: Optional[str] = None


def load_source(path: str) -> SourceInput:
    try:
        with open(path, "rb") as handle:
            return SourceInput(path=path, content=handle.read())
    except OSError as exc:
        return SourceInput(path=path, content=None, error=exc.strerror or str(exc))


def check_files(
    sources: Iterable[SourceInput],
    config: Optional[RuleConfig] = None,
    *,
    max_workers: Optional[int] = None,
    timeout: Optional[float] = None,
    executor: Optional[concurrent.futures.Executor] = None,
) -> RunResult:
    """
    Check every source on a worker pool and merge the results.

    Raises ConfigError before any file is touched when the configuration is
    malformed. Files still running when `timeout` expires are abandoned and
    reported as fatal errors without violations.
    """
    engine = RuleEngine(config)
    errors: List[FileError] = []
    pending: List[SourceInput] = []
    for source in sources:
        if source.content is None:
            reason = source.error or "file could not be read"
            sys.stderr.write(f"[firmlint] Skipping unreadable file {source.path}: {reason}\n")
            errors.append(FileError(source.path, reason))
        else:
            pending.append(source)

    owns_pool = executor is None
    pool = executor or concurrent.futures.ThreadPoolExecutor(max_workers=max_workers)
    reports: List[FileReport] = []
    futures: Dict[concurrent.futures.Future, SourceInput] = {}
    try:
        for source in pending:
            futures[pool.submit(engine.check_source, source.path, source.content)] = source
        done, not_done = concurrent.futures.wait(futures, timeout=timeout)
        for future in not_done:
            future.cancel()
            path = futures[future].path
            sys.stderr.write(f"[firmlint] Abandoned {path}: run timed out after {timeout}s\n")
            errors.append(FileError(path, "abandoned: run timed out"))
        for future in done:
            path = futures[future].path
            try:
                reports.append(future.result())
            except Exception as exc:  # pragma: no cover - safeguard
                sys.stderr.write(f"[firmlint] Failed to check {path}: {exc}\n")
                errors.append(FileError(path, f"internal error: {exc}"))
    except KeyboardInterrupt:
        for future in futures:
            future.cancel()
        raise
    finally:
        if owns_pool:
            pool.shutdown(wait=False, cancel_futures=True)

    checked_paths = [report.path for report in reports if report.error is None]
    project_violations = engine.check_project(checked_paths)
    return aggregate(reports, extra_violations=project_violations, extra_errors=errors)


def check_paths(
    paths: Iterable[str],
    config: Optional[RuleConfig] = None,
    **kwargs: Any,
) -> RunResult:
    return check_files([load_source(path) for path in paths], config, **kwargs)
