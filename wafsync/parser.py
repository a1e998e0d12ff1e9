"""Parsing of address lists (CSV-like text) into address entries."""

import csv
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path

from .errors import AddressParseError, InvalidFormat, UnsupportedAddressFamily
from .models import AddressEntry

logger = logging.getLogger(__name__)

RE_IPV4 = re.compile(
    r"^([0-9]{1,3})\.([0-9]{1,3})\.([0-9]{1,3})\.([0-9]{1,3})(?:/([0-9]|[12][0-9]|3[0-2]))?$"
)
HEADER_TOKEN = "ip"
COMMENT_MARKER = "#"


def parse_token(token: str, line: int | None = None) -> AddressEntry:
    """Parse a single address or CIDR token.

    Args:
        token: Raw token, e.g. ``"1.2.3.4"`` or ``"5.6.7.0/24"``
        line: Optional source line number, attached to raised errors

    Returns:
        Parsed AddressEntry

    Raises:
        UnsupportedAddressFamily: If the token contains ``:`` (IPv6)
        InvalidFormat: If the token is not a valid IPv4 address or CIDR block
    """
    token = token.strip()
    if ":" in token:
        raise UnsupportedAddressFamily(token, "IPv6 not supported", line)

    match = RE_IPV4.match(token)
    if not match:
        raise InvalidFormat(token, "Invalid IP format", line)

    octets = [int(part) for part in match.group(1, 2, 3, 4)]
    if any(octet > 255 for octet in octets):
        raise InvalidFormat(token, "Invalid IP format", line)

    base = (octets[0] << 24) | (octets[1] << 16) | (octets[2] << 8) | octets[3]
    prefix = int(match.group(5)) if match.group(5) is not None else 32
    return AddressEntry(base, prefix)


@dataclass
class ParseResult:
    """Outcome of parsing an address list."""

    entries: list[AddressEntry] = field(default_factory=list)
    errors: list[AddressParseError] = field(default_factory=list)
    duplicates: int = 0

    @property
    def valid_count(self) -> int:
        return len(self.entries)

    @property
    def error_count(self) -> int:
        return len(self.errors)


class AddressParser:
    """Best-effort, line-by-line parser for address lists.

    Only the first column is used; ``vendor_name`` and ``notes`` columns are
    ignored. Blank lines, ``#`` comments and an ``ip`` header row are skipped.
    A bad line is recorded and parsing continues.
    """

    def parse_lines(self, lines) -> ParseResult:
        result = ParseResult()
        seen: set[AddressEntry] = set()

        for line_num, raw_line in enumerate(lines, start=1):
            stripped = raw_line.strip()
            if not stripped or stripped.startswith(COMMENT_MARKER):
                continue

            row = next(csv.reader([stripped], skipinitialspace=True), [])
            token = row[0].strip().strip('"').strip() if row else ""
            if not token or token.lower() == HEADER_TOKEN:
                continue

            try:
                entry = parse_token(token, line_num)
            except AddressParseError as e:
                logger.error(str(e))
                result.errors.append(e)
                continue

            if entry in seen:
                result.duplicates += 1
                logger.debug(f"Line {line_num}: duplicate {token}")
                continue
            seen.add(entry)
            result.entries.append(entry)
            logger.debug(f"Line {line_num}: {token}")

        logger.info(
            f"Parsed {result.valid_count} valid IPs ({result.error_count} errors)"
        )
        if result.error_count:
            logger.warning("Some IPs had validation errors. Review the errors above.")
        return result

    def parse_text(self, text: str) -> ParseResult:
        return self.parse_lines(text.splitlines())

    def parse_file(self, path: str | Path) -> ParseResult:
        """Parse an address list from a file.

        Raises:
            FileNotFoundError: If the file doesn't exist
        """
        path = Path(path)
        if not path.is_file():
            raise FileNotFoundError(f"CSV file not found: {path}")
        logger.info(f"Parsing CSV file: {path}")
        # undecodable bytes become U+FFFD so the line fails as InvalidFormat
        with open(path, encoding="utf-8", errors="replace") as f:
            return self.parse_lines(f)
