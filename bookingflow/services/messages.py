"""
Message copy shared by the reminder run and the inbound webhook.
"""
from datetime import datetime, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

DEFAULT_BUSINESS_NAME = "הסלון"


def get_zone(name: str) -> ZoneInfo:
    """Tenant timezone, falling back to UTC for unknown names"""
    try:
        return ZoneInfo(name or "UTC")
    except (ZoneInfoNotFoundError, ValueError):
        return ZoneInfo("UTC")


def ensure_utc(dt: datetime) -> datetime:
    """Treat naive datetimes as UTC (SQLite drops tzinfo)"""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def format_local_time(start_at: datetime, tz_name: str) -> str:
    """HH:MM in the tenant's timezone"""
    if start_at is None:
        return ""
    return ensure_utc(start_at).astimezone(get_zone(tz_name)).strftime("%H:%M")


def build_reminder_message(business_name: str, time_str: str) -> str:
    business_name = business_name or DEFAULT_BUSINESS_NAME
    return (
        f"{business_name} ✂️\n"
        f"תזכורת: התור שלך מחר בשעה {time_str}.\n"
        "מגיע/ה?\n"
        "השב/השיבי:\n"
        "כן, אגיע\n"
        "או\n"
        "לא, בסוף לא אוכל להגיע"
    )


def build_confirmed_reply(business_name: str, time_str: str) -> str:
    return f"אושר ✅ נתראה ב-{time_str} אצל {business_name or DEFAULT_BUSINESS_NAME}."


def build_cancelled_reply() -> str:
    return "הבנתי, ביטלתי את התור."


ALREADY_CONFIRMED_REPLY = "כבר מאושר ✅"
ALREADY_CANCELLED_REPLY = "כבר בוטל ✅"
