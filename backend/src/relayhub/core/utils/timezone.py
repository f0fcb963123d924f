from __future__ import annotations

from datetime import datetime, timedelta, timezone, tzinfo
from typing import Any
from zoneinfo import ZoneInfo


def resolve_timezone(value: Any) -> tzinfo:
    """Chuyển chuỗi tz hoặc offset sang timezone.

    Ưu tiên tên tz IANA (ví dụ: 'Europe/Paris'), fallback sang định dạng offset '+07:00' hoặc số.
    """
    if isinstance(value, tzinfo):
        return value

    if value is None:
        return timezone.utc

    tz_str = str(value).strip()
    if not tz_str or tz_str.lower() == "utc":
        return timezone.utc

    try:
        return ZoneInfo(tz_str)
    except Exception:
        pass

    # Fallback offset dạng +7, +07:00, -420 (phút)
    try:
        sign = 1
        offset_value = tz_str

        if offset_value.startswith("-"):
            sign = -1
            offset_value = offset_value[1:]
        elif offset_value.startswith("+"):
            offset_value = offset_value[1:]

        if ":" in offset_value:
            hours_str, minutes_str = offset_value.split(":", 1)
            delta = timedelta(hours=int(hours_str), minutes=int(minutes_str))
        elif len(offset_value) <= 2:
            delta = timedelta(hours=int(offset_value))
        else:
            # Offset theo phút (VD: 420)
            delta = timedelta(minutes=int(offset_value))

        return timezone(sign * delta)
    except (TypeError, ValueError):
        return timezone.utc


def now_ms() -> int:
    """Epoch hiện tại tính bằng mili giây."""
    return int(datetime.now(timezone.utc).timestamp() * 1000)


def date_key(epoch_ms: float, tz: Any = None) -> str:
    """Khóa ngày lịch địa phương (YYYY-MM-DD) cho một mốc epoch mili giây."""
    moment = datetime.fromtimestamp(epoch_ms / 1000, tz=resolve_timezone(tz))
    return moment.strftime("%Y-%m-%d")


def iso_now() -> str:
    return datetime.now(timezone.utc).isoformat()
