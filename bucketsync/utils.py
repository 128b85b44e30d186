"""Utility functions for bucketsync."""

import hashlib
from datetime import datetime, timezone
from typing import Any, BinaryIO, Optional

# =============================================================================
# Constants for sync operations
# =============================================================================

# Chunk size used when streaming file content (1 MB)
DEFAULT_CHUNK_SIZE: int = 1024 * 1024

# Hash algorithm for content comparison
DEFAULT_HASH_ALGORITHM: str = "sha256"

# Seconds between reconciliation cycles
DEFAULT_SYNC_INTERVAL: float = 5.0

# Two mtimes closer than this (seconds) are treated as equal
DEFAULT_MIN_TIME_DELTA: float = 1.0

# Upper bound for the delay after repeated failed cycles (seconds)
DEFAULT_MAX_BACKOFF: float = 300.0


# =============================================================================
# Timestamp parsing utilities
# =============================================================================


def parse_iso_timestamp(timestamp_str: Optional[str]) -> Optional[datetime]:
    """Parse an ISO format timestamp as reported by object stores.

    Args:
        timestamp_str: ISO format timestamp string (e.g., "2025-01-15T10:30:00.000Z")

    Returns:
        Timezone-aware datetime, or None if parsing fails
    """
    if not timestamp_str:
        return None

    try:
        # The 'Z' suffix indicates UTC time
        if timestamp_str.endswith("Z"):
            timestamp_str = timestamp_str[:-1] + "+00:00"

        try:
            dt = datetime.fromisoformat(timestamp_str)
        except ValueError:
            # Try without microseconds
            if "." in timestamp_str:
                timestamp_str = timestamp_str.split(".")[0] + "+00:00"
            dt = datetime.fromisoformat(timestamp_str)
        if dt.tzinfo is None:
            # Object stores report UTC
            dt = dt.replace(tzinfo=timezone.utc)
        return dt
    except (ValueError, AttributeError):
        return None


def to_unix_timestamp(value: Any) -> Optional[float]:
    """Normalize a modification time into Unix seconds.

    Storage backends report modification times as floats, ints, datetimes
    or ISO strings depending on the implementation.

    Args:
        value: Raw modification time value

    Returns:
        Unix timestamp as float, or None if the value cannot be interpreted

    Examples:
        >>> to_unix_timestamp(1700000000)
        1700000000.0
        >>> to_unix_timestamp("2023-11-14T22:13:20Z")
        1700000000.0
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, datetime):
        return value.timestamp()
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            dt = parse_iso_timestamp(value)
            return dt.timestamp() if dt else None
    return None


# =============================================================================
# Size formatting utilities
# =============================================================================


def format_size(size_bytes: int) -> str:
    """Format file size in human-readable format.

    Args:
        size_bytes: Size in bytes

    Returns:
        Formatted size string (e.g., "1.5 MB", "256 B")
    """
    if size_bytes < 1024:
        return f"{size_bytes} B"
    elif size_bytes < 1024 * 1024:
        return f"{size_bytes / 1024:.1f} KB"
    elif size_bytes < 1024 * 1024 * 1024:
        return f"{size_bytes / 1024 / 1024:.1f} MB"
    else:
        return f"{size_bytes / 1024 / 1024 / 1024:.1f} GB"


# =============================================================================
# Hash calculation utilities
# =============================================================================


def calculate_content_hash(
    stream: BinaryIO,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    algorithm: str = DEFAULT_HASH_ALGORITHM,
) -> str:
    """Calculate the content hash of a byte stream.

    The stream is consumed in chunks of at most ``chunk_size`` bytes, so
    large files are never loaded into memory at once.

    Args:
        stream: Readable binary stream
        chunk_size: Maximum number of bytes read at a time
        algorithm: Any algorithm name accepted by hashlib.new

    Returns:
        Hex digest of the stream content

    Examples:
        >>> import io
        >>> calculate_content_hash(io.BytesIO(b""))[:16]
        'e3b0c44298fc1c14'
    """
    digest = hashlib.new(algorithm)
    while True:
        chunk = stream.read(chunk_size)
        if not chunk:
            break
        digest.update(chunk)
    return digest.hexdigest()
