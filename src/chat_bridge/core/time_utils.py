import time
from datetime import datetime, timedelta, timezone
from typing import Optional

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def now_iso_utc_z() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


now_iso = now_iso_utc_z


def now_ms() -> int:
    return int(time.time() * 1000)


def parse_iso_ms(value: object) -> Optional[int]:
    """Parse an RFC 3339 timestamp into epoch milliseconds.

    Accepts a trailing ``Z`` or an explicit offset and any number of fractional
    digits (Google APIs emit nanoseconds). Returns None when unparseable.
    """
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    if text.endswith("Z") or text.endswith("z"):
        text = text[:-1] + "+00:00"
    if "." in text:
        head, _, rest = text.partition(".")
        digits = ""
        for ch in rest:
            if not ch.isdigit():
                break
            digits += ch
        suffix = rest[len(digits) :]
        text = f"{head}.{(digits + '000000')[:6]}{suffix}"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return (parsed - _EPOCH) // timedelta(milliseconds=1)


def iso_from_ms(value: int) -> str:
    dt = _EPOCH + timedelta(milliseconds=value)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


__all__ = ["now_iso_utc_z", "now_iso", "now_ms", "parse_iso_ms", "iso_from_ms"]
