"""Unit tests for utility functions."""

import hashlib
import io
from datetime import datetime, timezone

from bucketsync.utils import (
    calculate_content_hash,
    format_size,
    parse_iso_timestamp,
    to_unix_timestamp,
)


class TestCalculateContentHash:
    """Tests for calculate_content_hash function."""

    def test_matches_hashlib(self):
        """Test the digest equals a one-shot sha256."""
        data = b"hello world"
        assert calculate_content_hash(io.BytesIO(data)) == hashlib.sha256(data).hexdigest()

    def test_chunk_size_does_not_change_digest(self):
        """Test streaming in small chunks gives the same digest."""
        data = b"x" * 10_000 + b"y" * 333
        expected = calculate_content_hash(io.BytesIO(data))
        assert calculate_content_hash(io.BytesIO(data), chunk_size=7) == expected

    def test_empty_stream(self):
        """Test hashing an empty stream."""
        assert calculate_content_hash(io.BytesIO(b"")) == hashlib.sha256(b"").hexdigest()

    def test_other_algorithm(self):
        """Test a different hashlib algorithm can be selected."""
        data = b"content"
        result = calculate_content_hash(io.BytesIO(data), algorithm="md5")
        assert result == hashlib.md5(data).hexdigest()

    def test_different_content_different_hash(self):
        assert calculate_content_hash(io.BytesIO(b"v1")) != calculate_content_hash(
            io.BytesIO(b"v2")
        )


class TestTimestamps:
    """Tests for timestamp normalization."""

    def test_parse_iso_with_z_suffix(self):
        dt = parse_iso_timestamp("2023-11-14T22:13:20.000000Z")
        assert dt == datetime(2023, 11, 14, 22, 13, 20, tzinfo=timezone.utc)

    def test_parse_naive_is_utc(self):
        """Test naive timestamps are interpreted as UTC."""
        dt = parse_iso_timestamp("2023-11-14T22:13:20")
        assert dt is not None
        assert dt.tzinfo == timezone.utc

    def test_parse_invalid(self):
        assert parse_iso_timestamp("not a date") is None
        assert parse_iso_timestamp(None) is None
        assert parse_iso_timestamp("") is None

    def test_to_unix_from_numbers(self):
        assert to_unix_timestamp(1700000000) == 1700000000.0
        assert to_unix_timestamp(1700000000.5) == 1700000000.5

    def test_to_unix_from_datetime(self):
        dt = datetime(2023, 11, 14, 22, 13, 20, tzinfo=timezone.utc)
        assert to_unix_timestamp(dt) == 1700000000.0

    def test_to_unix_from_string(self):
        assert to_unix_timestamp("2023-11-14T22:13:20Z") == 1700000000.0
        assert to_unix_timestamp("1700000000") == 1700000000.0

    def test_to_unix_unknown(self):
        assert to_unix_timestamp(None) is None
        assert to_unix_timestamp(True) is None
        assert to_unix_timestamp("garbage") is None
        assert to_unix_timestamp(object()) is None


class TestFormatSize:
    """Tests for format_size function."""

    def test_bytes(self):
        assert format_size(256) == "256 B"

    def test_kilobytes(self):
        assert format_size(1536) == "1.5 KB"

    def test_megabytes(self):
        assert format_size(5 * 1024 * 1024) == "5.0 MB"

    def test_gigabytes(self):
        assert format_size(2 * 1024**3) == "2.0 GB"
