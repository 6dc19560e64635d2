"""SQL comment and string-literal handling.

Guardrail patterns run against SQL with comments removed so that a predicate
mentioned only in a comment can never satisfy a rule. Comment bodies are kept
separately because governance markers live there.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class CommentSplit:
    """SQL text with comments blanked out, plus the extracted comment bodies."""

    text: str
    comments: tuple[str, ...] = field(default_factory=tuple)
    # A "/*" opened inside a block comment. Dialects disagree on whether block
    # comments nest, so the comment extent is ambiguous.
    nested_block_comment: bool = False


def split_sql_comments(sql: str) -> CommentSplit:
    """Separate line/block comments from SQL while preserving quoted strings.

    Removed comments are replaced by whitespace of the same length (newlines
    kept), so offsets in the returned text match the original SQL.
    """
    if not isinstance(sql, str) or not sql:
        return CommentSplit(text="")

    out: list[str] = []
    comments: list[str] = []
    current: list[str] = []
    i = 0
    in_single_quote = False
    in_double_quote = False
    in_line_comment = False
    block_comment_depth = 0
    nested = False

    def blank(ch: str) -> str:
        return "\n" if ch == "\n" else " "

    while i < len(sql):
        ch = sql[i]
        nxt = sql[i + 1] if i + 1 < len(sql) else ""

        if in_line_comment:
            if ch == "\n":
                in_line_comment = False
                comments.append("".join(current))
                current = []
                out.append("\n")
            else:
                current.append(ch)
                out.append(" ")
            i += 1
            continue

        if block_comment_depth > 0:
            if ch == "/" and nxt == "*":
                block_comment_depth += 1
                nested = True
                current.append("/*")
                out.append("  ")
                i += 2
                continue
            if ch == "*" and nxt == "/":
                block_comment_depth -= 1
                if block_comment_depth == 0:
                    comments.append("".join(current))
                    current = []
                else:
                    current.append("*/")
                out.append("  ")
                i += 2
                continue
            current.append(ch)
            out.append(blank(ch))
            i += 1
            continue

        if in_single_quote:
            out.append(ch)
            if ch == "'":
                if nxt == "'":  # Escaped single quote
                    out.append(nxt)
                    i += 2
                    continue
                in_single_quote = False
            i += 1
            continue

        if in_double_quote:
            out.append(ch)
            if ch == '"':
                if nxt == '"':  # Escaped double quote
                    out.append(nxt)
                    i += 2
                    continue
                in_double_quote = False
            i += 1
            continue

        if ch == "'":
            in_single_quote = True
        elif ch == '"':
            in_double_quote = True
        elif ch == "-" and nxt == "-":
            in_line_comment = True
            out.append("  ")
            i += 2
            continue
        elif ch == "/" and nxt == "*":
            block_comment_depth = 1
            out.append("  ")
            i += 2
            continue

        out.append(ch)
        i += 1

    # Unterminated comments still count as comments.
    if in_line_comment or block_comment_depth > 0:
        comments.append("".join(current))

    return CommentSplit(
        text="".join(out),
        comments=tuple(c.strip() for c in comments),
        nested_block_comment=nested,
    )


def strip_sql_comments(sql: str) -> str:
    """Strip SQL line/block comments while preserving quoted strings."""
    return split_sql_comments(sql).text


def mask_string_literals(sql: str) -> str:
    """Blank the contents of single-quoted literals, keeping the quotes.

    ``WHERE tenant_id = 'acme'`` becomes ``WHERE tenant_id = '    '``. The
    result has the same length as the input so match offsets can be mapped
    back. Expects comment-free SQL.
    """
    return _mask_literals(sql)[0]


def has_unterminated_literal(sql: str) -> bool:
    """Return True when comment-free SQL ends inside a quoted literal or identifier."""
    return _mask_literals(sql)[1]


def _mask_literals(sql: str) -> tuple[str, bool]:
    if not isinstance(sql, str) or not sql:
        return "", False

    out: list[str] = []
    i = 0
    in_literal = False
    in_identifier = False
    while i < len(sql):
        ch = sql[i]
        if in_identifier:
            if ch == '"':
                in_identifier = False
            out.append(ch)
            i += 1
            continue
        if ch == '"' and not in_literal:
            in_identifier = True
            out.append(ch)
            i += 1
            continue
        if in_literal:
            if ch == "'":
                if i + 1 < len(sql) and sql[i + 1] == "'":
                    out.append("  ")
                    i += 2
                    continue
                in_literal = False
                out.append(ch)
            else:
                out.append("\n" if ch == "\n" else " ")
            i += 1
            continue
        if ch == "'":
            in_literal = True
        out.append(ch)
        i += 1
    return "".join(out), in_literal or in_identifier
