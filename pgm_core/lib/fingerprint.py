import hashlib
import re

from pgm_core.lib.scanner import COMMENT, LITERAL, iter_segments

_WHITESPACE = re.compile(r"\s+")


def normalize_sql(sql: str) -> str:
    """Normalize SQL by removing comments and whitespace differences while preserving literals."""
    sql = sql.replace("\r\n", "\n")

    out = []
    code = []
    for kind, text in iter_segments(sql):
        if kind == LITERAL:
            out.append(_WHITESPACE.sub(" ", "".join(code)))
            out.append(text)
            code = []
        elif kind == COMMENT:
            # A comment still separates tokens
            code.append(" ")
        else:
            code.append(text)
    out.append(_WHITESPACE.sub(" ", "".join(code)))

    return "".join(out).strip()


def fingerprint(sql: str) -> str:
    """Generate a stable hash of the normalized SQL."""
    normalized = normalize_sql(sql)
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()
