"""Tests for the group file codec."""

from pathlib import Path

import pytest

from tagstore.codec import append_tags, decode, encode, read_group_file
from tagstore.errors import CorruptRead


class TestDecode:
    """Tests for decoding file content."""

    def test_empty(self) -> None:
        """Test that empty content decodes to no tags."""
        assert decode(b"") == []

    def test_mixed_line_endings(self) -> None:
        """Test that LF and CRLF are both line boundaries."""
        assert decode(b"alpha\r\nbeta\ngamma\r\n") == ["alpha", "beta", "gamma"]

    def test_trims_and_skips_blank_lines(self) -> None:
        """Test that lines are trimmed and blank lines dropped."""
        assert decode("  alpha  \n\n   \nbeta\t\n") == ["alpha", "beta"]

    def test_dedupes_case_insensitively(self) -> None:
        """Test that the first spelling of a duplicate wins."""
        assert decode("Red\nblue\nRED\nred\n") == ["Red", "blue"]

    def test_invalid_utf8_is_not_fatal(self) -> None:
        """Test that undecodable bytes are replaced instead of raising."""
        assert decode(b"ok\n\xff\xfe\n") == ["ok", "\ufffd\ufffd"]


class TestEncode:
    """Tests for append encoding."""

    def test_empty_file(self) -> None:
        """Test that tags are newline-joined with no leading separator."""
        assert encode(["a", "b"]) == b"a\nb"

    def test_nonempty_file_gets_separator(self) -> None:
        """Test that a newline is prefixed when appending to existing content."""
        assert encode(["a", "b"], file_nonempty=True) == b"\na\nb"

    def test_no_tags(self) -> None:
        """Test that nothing is produced for no tags."""
        assert encode([], file_nonempty=True) == b""

    def test_round_trip(self) -> None:
        """Test that encode then decode yields the same tags."""
        tags = ["ops", "Dev", "release notes", "ünïcode"]
        assert decode(encode(tags)) == tags


class TestFiles:
    """Tests for reading and appending group files."""

    def test_read_missing_returns_none(self, tmp_path: Path) -> None:
        """Test that a missing file is not an error."""
        assert read_group_file(tmp_path / "tags_x.txt") is None

    def test_read_unreadable_raises(self, tmp_path: Path) -> None:
        """Test that I/O errors other than not-found become CorruptRead."""
        path = tmp_path / "tags_x.txt"
        path.mkdir()
        with pytest.raises(CorruptRead):
            read_group_file(path)

    def test_append_creates_file(self, tmp_path: Path) -> None:
        """Test that the first append creates the file without a leading newline."""
        path = tmp_path / "tags_x.txt"
        append_tags(path, ["a", "b"])
        assert path.read_text() == "a\nb"

    def test_append_after_unterminated_line(self, tmp_path: Path) -> None:
        """Test that appending never glues onto the last existing line."""
        path = tmp_path / "tags_x.txt"
        path.write_text("existing")
        append_tags(path, ["new"])
        assert path.read_text() == "existing\nnew"
        assert read_group_file(path) == ["existing", "new"]

    def test_append_nothing(self, tmp_path: Path) -> None:
        """Test that appending no tags does not create the file."""
        path = tmp_path / "tags_x.txt"
        assert append_tags(path, []) == 0
        assert not path.exists()
