"""
Line-oriented SQL statement scanner.

This is deliberately not a parser. It walks the text one line at a time and only
tracks enough lexical state (quotes, dollar quotes, comments, BEGIN ATOMIC
bodies) to know where a statement ends and which characters belong to comments.
Classifying what a statement *is* is left to pgm_core.lib.parser.

Rules:
  - ';' terminates a statement only outside literals, quoted identifiers,
    dollar-quoted bodies, comments and SQL-standard BEGIN ATOMIC ... END bodies
  - comment-only lines between statements are dropped
  - comments inside a statement are kept as part of its text
  - a trailing statement without ';' is still returned (terminated=False)
"""

import re
from dataclasses import dataclass
from typing import Iterator, List, Optional, Tuple

CODE = "code"
COMMENT = "comment"
LITERAL = "literal"
TERMINATOR = "terminator"

_SINGLE = "single"
_DOUBLE = "double"
_DOLLAR = "dollar"
_BLOCK = "block"

_DOLLAR_TAG = re.compile(r"\$(?:[A-Za-z_][A-Za-z0-9_]*)?\$")
_WORD = re.compile(r"[A-Za-z_][A-Za-z0-9_$]*")


@dataclass
class ScanState:
    """
    Lexical state carried from one line to the next.

    Attributes:
        mode: code, or the kind of quote/comment currently open
        tag: Closing tag of the open dollar quote
        depth: Nesting depth of block comments
        escapes: Whether the open string is an E'' string
        atomic: Nesting depth of BEGIN ATOMIC bodies
        cases: Open CASE expressions inside a BEGIN ATOMIC body
        after_begin: Last keyword was BEGIN, so ATOMIC may follow
    """
    mode: str = CODE
    tag: str = ""
    depth: int = 0
    escapes: bool = False
    atomic: int = 0
    cases: int = 0
    after_begin: bool = False


@dataclass
class Statement:
    text: str
    line: int
    terminated: bool = True


def _is_word_char(ch: str) -> bool:
    return ch.isalnum() or ch == "_"


def _segment_kind(mode: str) -> str:
    if mode == CODE:
        return CODE
    if mode == _BLOCK:
        return COMMENT
    return LITERAL


def _track_keyword(word: str, state: ScanState):
    """Follow BEGIN ATOMIC ... END nesting. CASE ... END inside a body is not its end."""
    if state.after_begin:
        state.after_begin = False
        if word == "ATOMIC":
            state.atomic += 1
            return
    if word == "BEGIN":
        state.after_begin = True
    elif state.atomic:
        if word == "CASE":
            state.cases += 1
        elif word == "END":
            if state.cases:
                state.cases -= 1
            else:
                state.atomic -= 1


def scan_line(line: str, state: ScanState) -> List[Tuple[str, str]]:
    """Split one line into (kind, text) segments, updating state in place."""
    segments = []
    start = 0
    i = 0
    n = len(line)

    def emit(kind: str, end: int):
        nonlocal start
        if end > start:
            segments.append((kind, line[start:end]))
        start = end

    while i < n:
        ch = line[i]

        if state.mode == CODE:
            if line.startswith("--", i):
                end = len(line.rstrip("\r\n"))
                emit(CODE, i)
                emit(COMMENT, end)
                i = end
                continue
            if line.startswith("/*", i):
                emit(CODE, i)
                state.mode = _BLOCK
                state.depth = 1
                i += 2
                continue
            if ch == "'":
                emit(CODE, i)
                state.mode = _SINGLE
                # E'...' strings allow backslash escapes
                state.escapes = (
                    i > 0 and line[i - 1] in "eE"
                    and (i < 2 or not _is_word_char(line[i - 2]))
                )
                i += 1
                continue
            if ch == '"':
                emit(CODE, i)
                state.mode = _DOUBLE
                i += 1
                continue
            if ch == "$" and not (i > 0 and _is_word_char(line[i - 1])):
                match = _DOLLAR_TAG.match(line, i)
                if match:
                    emit(CODE, i)
                    state.mode = _DOLLAR
                    state.tag = match.group(0)
                    i = match.end()
                    continue
            if ch == ";":
                emit(CODE, i)
                state.after_begin = False
                # Inside BEGIN ATOMIC the ';' belongs to the body
                emit(TERMINATOR if state.atomic == 0 else CODE, i + 1)
                i += 1
                continue
            if (ch == "_" or ch.isalpha()) and not (i > 0 and _is_word_char(line[i - 1])):
                match = _WORD.match(line, i)
                if match:
                    _track_keyword(match.group(0).upper(), state)
                    i = match.end()
                    continue
            i += 1

        elif state.mode == _BLOCK:
            if line.startswith("/*", i):
                state.depth += 1
                i += 2
            elif line.startswith("*/", i):
                state.depth -= 1
                i += 2
                if state.depth == 0:
                    emit(COMMENT, i)
                    state.mode = CODE
            else:
                i += 1

        elif state.mode == _SINGLE:
            if state.escapes and ch == "\\":
                i += 2
                continue
            if ch == "'":
                if line.startswith("''", i):
                    i += 2
                    continue
                i += 1
                emit(LITERAL, i)
                state.mode = CODE
                state.escapes = False
                continue
            i += 1

        elif state.mode == _DOUBLE:
            if ch == '"':
                if line.startswith('""', i):
                    i += 2
                    continue
                i += 1
                emit(LITERAL, i)
                state.mode = CODE
                continue
            i += 1

        else:  # dollar quote
            if line.startswith(state.tag, i):
                i += len(state.tag)
                emit(LITERAL, i)
                state.mode = CODE
                state.tag = ""
                continue
            i += 1

    emit(_segment_kind(state.mode), n)
    return segments


def iter_segments(sql: str) -> Iterator[Tuple[str, str]]:
    """Yield (kind, text) segments for a whole SQL text."""
    state = ScanState()
    for line in sql.splitlines(keepends=True):
        yield from scan_line(line, state)


def split_statements(sql: str) -> List[Statement]:
    """Split SQL text into statements on top-level ';' terminators."""
    statements = []
    state = ScanState()
    parts: List[str] = []
    start_line: Optional[int] = None

    def add(kind: str, text: str, lineno: int):
        nonlocal start_line
        if start_line is None:
            # Skip blank lines and comments until the statement really starts
            if kind == COMMENT or not text.strip():
                return
            start_line = lineno
            text = text.lstrip()
        parts.append(text)

    def finish(terminated: bool):
        nonlocal parts, start_line
        if start_line is not None:
            statements.append(Statement(
                text="".join(parts).rstrip(),
                line=start_line,
                terminated=terminated,
            ))
        parts = []
        start_line = None

    for lineno, line in enumerate(sql.splitlines(keepends=True), 1):
        for kind, text in scan_line(line, state):
            if kind != TERMINATOR:
                add(kind, text, lineno)
                continue
            # A stray ';' with nothing before it is dropped
            if start_line is not None:
                add(CODE, text, lineno)
                finish(terminated=True)

    finish(terminated=False)
    return statements
