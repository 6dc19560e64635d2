"""Tests for SQL comment and literal handling."""

from query_governance.sql.comments import (
    has_unterminated_literal,
    mask_string_literals,
    split_sql_comments,
    strip_sql_comments,
)


def test_strip_sql_comments_removes_line_and_block_comments():
    """Line and block comments should be blanked, SQL kept."""
    sql = "SELECT 1 -- trailing\nFROM t /* block */ WHERE x = 1"
    stripped = strip_sql_comments(sql)
    assert "trailing" not in stripped
    assert "block" not in stripped
    assert "SELECT 1" in stripped
    assert "WHERE x = 1" in stripped


def test_strip_sql_comments_preserves_length_and_newlines():
    """Offsets in stripped text must line up with the original."""
    sql = "SELECT a -- note\nFROM t /* x\ny */ WHERE b = 1"
    stripped = strip_sql_comments(sql)
    assert len(stripped) == len(sql)
    assert stripped.count("\n") == sql.count("\n")
    assert stripped.index("WHERE") == sql.index("WHERE")


def test_comment_markers_inside_strings_are_not_comments():
    """Comment markers inside quoted strings must survive."""
    sql = "SELECT '-- not a comment' AS a, \"/* nor this */\" FROM t"
    assert strip_sql_comments(sql) == sql
    assert split_sql_comments(sql).comments == ()


def test_split_sql_comments_collects_bodies():
    """Comment bodies are returned stripped, in order."""
    split = split_sql_comments("-- @pii-approved: email\nSELECT 1 /* second */")
    assert split.comments == ("@pii-approved: email", "second")


def test_nested_block_comments():
    """Nested block comments are consumed as one comment."""
    sql = "SELECT 1 /* outer /* inner */ still outer */ FROM t"
    stripped = strip_sql_comments(sql)
    assert "outer" not in stripped
    assert "FROM t" in stripped
    assert split_sql_comments(sql).nested_block_comment


def test_plain_block_comment_is_not_nested():
    """Sequential block comments do not raise the nesting flag."""
    split = split_sql_comments("SELECT 1 /* a */ FROM t /* b */")
    assert not split.nested_block_comment


def test_unterminated_comment_is_still_collected():
    """An unterminated block comment swallows the rest of the text."""
    split = split_sql_comments("SELECT 1 /* tenant_id = @tenant_id")
    assert "tenant_id" not in split.text
    assert split.comments == ("tenant_id = @tenant_id",)


def test_empty_input():
    """Empty or non-string input yields empty text."""
    assert strip_sql_comments("") == ""
    assert strip_sql_comments(None) == ""


def test_mask_string_literals_blanks_contents_and_keeps_quotes():
    """Literal bodies are blanked; identifiers and length are preserved."""
    sql = "WHERE tenant_id = 'acme' AND \"Name\" = 'it''s'"
    masked = mask_string_literals(sql)
    assert len(masked) == len(sql)
    assert "acme" not in masked
    assert "'    '" in masked
    assert '"Name"' in masked
    assert "it" not in masked.split("=")[-1]


def test_has_unterminated_literal():
    """Detects a statement ending inside a literal."""
    assert has_unterminated_literal("SELECT 'abc FROM t")
    assert has_unterminated_literal('SELECT "abc FROM t')
    assert not has_unterminated_literal("SELECT 'abc' FROM t")
    assert not has_unterminated_literal("SELECT 'it''s' FROM t")
