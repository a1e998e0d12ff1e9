"""Tests for address list parsing."""

import pytest

from wafsync.errors import InvalidFormat, UnsupportedAddressFamily
from wafsync.models import AddressEntry
from wafsync.parser import AddressParser, parse_token


class TestParseToken:
    """Test single token parsing."""

    def test_single_address(self) -> None:
        """A bare address is a /32 entry."""
        entry = parse_token("1.2.3.4")
        assert entry == AddressEntry(0x01020304, 32)
        assert str(entry) == "1.2.3.4"

    def test_cidr_block(self) -> None:
        entry = parse_token("5.6.7.0/24")
        assert entry.prefix == 24
        assert str(entry) == "5.6.7.0/24"

    def test_surrounding_whitespace(self) -> None:
        assert parse_token("  10.0.0.1  ") == AddressEntry.from_string("10.0.0.1")

    @pytest.mark.parametrize(
        "token",
        ["256.1.1.1", "1.2.3", "1.2.3.4/33", "1.2.3.4/", "abc", "1.2.3.4.5", "1.2.3.4/2a"],
    )
    def test_invalid_format(self, token: str) -> None:
        with pytest.raises(InvalidFormat):
            parse_token(token)

    def test_non_ascii_digits_rejected(self) -> None:
        """Only ASCII digits form an address."""
        with pytest.raises(InvalidFormat):
            parse_token("\u0661\u0660.\u0660.\u0660.\u0661")
        with pytest.raises(InvalidFormat):
            parse_token("10.0.0.\uff11")

    def test_ipv6_rejected(self) -> None:
        with pytest.raises(UnsupportedAddressFamily) as exc_info:
            parse_token("2001:db8::1", line=7)
        assert exc_info.value.line == 7
        assert str(exc_info.value) == "Line 7: IPv6 not supported - 2001:db8::1"


class TestAddressParser:
    """Test AddressParser on CSV text."""

    @pytest.fixture
    def parser(self) -> AddressParser:
        return AddressParser()

    def test_header_comments_and_blanks(self, parser: AddressParser) -> None:
        """Header row, comments and blank lines are skipped."""
        text = """ip,vendor_name,notes
# office ranges

1.2.3.4,Vendor A,Main office
5.6.7.0/24,Vendor B,
"""
        result = parser.parse_text(text)

        assert [str(e) for e in result.entries] == ["1.2.3.4", "5.6.7.0/24"]
        assert result.error_count == 0

    def test_quoted_and_padded_fields(self, parser: AddressParser) -> None:
        result = parser.parse_text('"10.0.0.1","Vendor, Inc",x\n  10.0.0.2 , y\n')
        assert [str(e) for e in result.entries] == ["10.0.0.1", "10.0.0.2"]

    def test_bad_lines_do_not_stop_parsing(self, parser: AddressParser) -> None:
        """IPv6 and malformed lines are recorded, later lines still parse."""
        text = "ip\n2001:db8::1,v6\n300.1.1.1,bad\n10.0.0.1,ok\n"
        result = parser.parse_text(text)

        assert [str(e) for e in result.entries] == ["10.0.0.1"]
        assert result.error_count == 2
        assert isinstance(result.errors[0], UnsupportedAddressFamily)
        assert result.errors[0].line == 2
        assert isinstance(result.errors[1], InvalidFormat)
        assert result.errors[1].line == 3

    def test_duplicates_removed_keeping_order(self, parser: AddressParser) -> None:
        text = "10.0.0.3\n10.0.0.1\n10.0.0.3\n10.0.0.2\n10.0.0.1\n"
        result = parser.parse_text(text)

        assert [str(e) for e in result.entries] == ["10.0.0.3", "10.0.0.1", "10.0.0.2"]
        assert result.duplicates == 2
        assert result.valid_count == 3

    def test_only_header(self, parser: AddressParser) -> None:
        result = parser.parse_text("ip,vendor_name,notes\n")
        assert result.entries == []
        assert result.errors == []

    def test_parse_file(self, parser: AddressParser, tmp_path) -> None:
        path = tmp_path / "ips.csv"
        path.write_text("ip\n192.168.1.1\n192.168.1.0/24\n")

        result = parser.parse_file(path)

        assert result.valid_count == 2

    def test_parse_file_missing(self, parser: AddressParser, tmp_path) -> None:
        with pytest.raises(FileNotFoundError, match="CSV file not found"):
            parser.parse_file(tmp_path / "missing.csv")

    def test_parse_file_undecodable_line(self, parser: AddressParser, tmp_path) -> None:
        """A line with invalid UTF-8 is an error; the other lines still parse."""
        path = tmp_path / "ips.csv"
        path.write_bytes(b"ip\n10.0.0.1\n\xff\xfe,bad\n10.0.0.2\n")

        result = parser.parse_file(path)

        assert [str(e) for e in result.entries] == ["10.0.0.1", "10.0.0.2"]
        assert result.error_count == 1
        assert isinstance(result.errors[0], InvalidFormat)
        assert result.errors[0].line == 3
