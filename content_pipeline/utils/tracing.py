"""
Trace identifiers for stage invocations and pipeline runs.
"""

import secrets
import time


def generate_trace_id(prefix: str = "trace") -> str:
    """
    Generate an opaque correlation id.
    Format: {prefix}-{epoch_ms}-{9 random chars}
    """
    return f"{prefix}-{int(time.time() * 1000)}-{secrets.token_hex(5)[:9]}"
