from __future__ import annotations

from datetime import datetime, timezone

# next_attempt_at for terminal items: never reached by any claim query.
FAR_FUTURE = datetime(9999, 12, 31, 0, 0, 0, tzinfo=timezone.utc)


def now_utc() -> datetime:
    return datetime.now(timezone.utc)
