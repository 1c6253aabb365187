"""
Identifier and timestamp helpers
"""

import time
import uuid
from datetime import datetime, timezone


def generate_id(kind: str = "id") -> str:
    """Generate a unique id scoped by entity kind, e.g. 'marker_1706403821234_3f9c0a1b2d4e'"""
    timestamp = int(time.time() * 1000)
    return f"{kind}_{timestamp}_{uuid.uuid4().hex[:12]}"


def now_iso() -> str:
    """Current UTC time as an ISO-8601 string with millisecond precision"""
    now = datetime.now(timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"
