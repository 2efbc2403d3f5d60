"""
Lightweight scanning of user SQL text.

Compare mode and the migration engine classify SQL by keyword before it
reaches SQLite. Both need to skip comments and string literals, otherwise
a ``--`` inside a quoted value truncates a query and a ``COMMIT`` inside a
quoted value looks like transaction control.

Invariants:
    - strip_sql_comments() never changes text inside literals or quoted
      identifiers
    - mask_sql_literals() keeps statement boundaries (``;``) and keywords
      outside literals where they were

How to change safely:
    - Literal forms must be matched before comment forms in _TOKEN_RE, so
      that ``'a--b'`` is read as one literal
"""

from __future__ import annotations

import re

# Single-quoted strings, double-quoted/backtick/bracket identifiers, then comments.
_TOKEN_RE = re.compile(
    r"(?P<literal>'(?:[^']|'')*'|\"(?:[^\"]|\"\")*\"|`(?:[^`]|``)*`|\[[^\]]*\])"
    r"|(?P<comment>--[^\n]*|/\*.*?(?:\*/|\Z))",
    re.DOTALL,
)


def strip_sql_comments(sql: str) -> str:
    """Replace comments with a space, leaving literals untouched.

    Example:
        >>> strip_sql_comments("SELECT '--x' -- note")
        "SELECT '--x'  "
    """

    def replace(match: re.Match[str]) -> str:
        return match.group("literal") or " "

    return _TOKEN_RE.sub(replace, sql)


def mask_sql_literals(sql: str) -> str:
    """Drop comments and empty every literal, for keyword scanning only.

    Example:
        >>> mask_sql_literals("INSERT INTO t VALUES ('a; COMMIT')")
        "INSERT INTO t VALUES ('')"
    """

    def replace(match: re.Match[str]) -> str:
        literal = match.group("literal")
        if literal is None:
            return " "
        return literal[0] + literal[-1]

    return _TOKEN_RE.sub(replace, sql)
