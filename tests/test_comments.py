"""Tests for comment stripping."""

from openprose.codegen.comments import strip_comments


class TestStripComments:
    """Test strip_comments."""

    def test_inline_and_standalone(self) -> None:
        """Standalone lines are dropped and inline comments cut off."""
        result = strip_comments('# top\nsession "a # not"  # trailing\n')
        assert result.code == 'session "a # not"\n'
        assert [c.text for c in result.comments] == ["# top", "# trailing"]
        assert [c.is_inline for c in result.comments] == [False, True]

    def test_comment_positions(self) -> None:
        """Comment spans point at the '#'."""
        result = strip_comments('session "a"  # note\n')
        (comment,) = result.comments
        assert comment.span.line == 1
        assert comment.span.column == 13

    def test_source_without_comments_is_unchanged(self) -> None:
        """Text without comments passes through."""
        source = 'agent a:\n  model: sonnet\n'
        result = strip_comments(source)
        assert result.code == source
        assert result.comments == []

    def test_indented_comment_line_is_dropped(self) -> None:
        """A comment-only line inside a block is removed entirely."""
        result = strip_comments('do:\n  # step one\n  session "a"\n')
        assert result.code == 'do:\n  session "a"\n'
