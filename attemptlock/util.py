"""
Utility functions for attemptlock.

Provides time helpers, hex validation and constant-time comparison.
"""

import hmac
import re
import time
from datetime import datetime, timezone
from typing import Optional, Union

HEX_PATTERN = re.compile(r"[a-fA-F0-9]+")


def now_epoch() -> int:
    """Get current Unix timestamp as integer."""
    return int(time.time())


def utc_rfc3339(ts_epoch: Optional[int]) -> Optional[str]:
    """Convert Unix timestamp to RFC3339 UTC string."""
    if ts_epoch is None:
        return None
    return datetime.fromtimestamp(ts_epoch, tz=timezone.utc).strftime('%Y-%m-%dT%H:%M:%SZ')


def constant_time_compare(a: Union[str, bytes], b: Union[str, bytes]) -> bool:
    """
    Compare two strings/bytes in constant time to prevent timing attacks.
    """
    if isinstance(a, str):
        a = a.encode('utf-8')
    if isinstance(b, str):
        b = b.encode('utf-8')
    return hmac.compare_digest(a, b)


def is_even_hex(s: str) -> bool:
    """True if s is a non-empty, even-length run of hex digits."""
    if not isinstance(s, str) or not s:
        return False
    return len(s) % 2 == 0 and HEX_PATTERN.fullmatch(s) is not None
