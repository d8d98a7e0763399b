"""Time source for the engine. Components take a clock callable so tests can pin 'now'."""

from datetime import datetime, timezone


def utc_now() -> datetime:
    return datetime.now(timezone.utc)
