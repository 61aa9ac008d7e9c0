"""Date/time tool: current time, parsing, formatting and differences."""

from datetime import (
    datetime,
    timedelta,
    timezone,
)
from typing import (
    Any,
    Dict,
)
from zoneinfo import (
    ZoneInfo,
    ZoneInfoNotFoundError,
)

from lmagent.tools import (
    ToolRegistry,
    define_tool,
)

_FORMATS = {
    "date": "%A, %B %d, %Y",
    "time": "%I:%M:%S %p %Z",
    "datetime": "%A, %B %d, %Y at %I:%M:%S %p %Z",
}

_UNIX_SECONDS_LIMIT = 10_000_000_000


def _zone(name: str | None) -> timezone | ZoneInfo:
    if not name or name.upper() == "UTC":
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"Unknown timezone: {name}") from exc


def parse_date(value: str) -> datetime:
    """
    Parse keywords (now/today/tomorrow/yesterday), unix timestamps (seconds or milliseconds) and
    ISO-8601 strings into an aware UTC datetime.
    """
    lower = value.lower().strip()
    now = datetime.now(timezone.utc)
    if lower in ("now", "today"):
        return now
    if lower == "tomorrow":
        return now + timedelta(days=1)
    if lower == "yesterday":
        return now - timedelta(days=1)

    try:
        stamp = float(lower)
    except ValueError:
        pass
    else:
        if stamp < _UNIX_SECONDS_LIMIT:
            return datetime.fromtimestamp(stamp, timezone.utc)
        return datetime.fromtimestamp(stamp / 1000, timezone.utc)

    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError as exc:
        raise ValueError(f"Could not parse date: {value}") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def relative_time(moment: datetime) -> str:
    """Human phrasing of *moment* relative to now, e.g. ``in 3 days`` or ``2 hours ago``."""
    diff_sec = round((moment - datetime.now(timezone.utc)).total_seconds())
    if abs(diff_sec) < 1:
        return "now"

    for limit, unit, size in (
        (60, "second", 1),
        (3600, "minute", 60),
        (86400, "hour", 3600),
        (86400 * 30, "day", 86400),
        (86400 * 365, "month", 86400 * 30),
    ):
        if abs(diff_sec) < limit:
            amount = round(diff_sec / size)
            break
    else:
        unit, amount = "year", round(diff_sec / (86400 * 365))

    plural = "" if abs(amount) == 1 else "s"
    if amount >= 0:
        return f"in {amount} {unit}{plural}"
    return f"{-amount} {unit}{plural} ago"


def format_date(moment: datetime, fmt: str | None = None, tz_name: str | None = None) -> str:
    """Render *moment* in one of ``date/time/datetime/iso/unix/relative``."""
    if fmt == "iso":
        return moment.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")
    if fmt == "unix":
        return str(int(moment.timestamp()))
    if fmt == "relative":
        return relative_time(moment)
    return moment.astimezone(_zone(tz_name)).strftime(_FORMATS.get(fmt or "", _FORMATS["datetime"]))


def _iso(moment: datetime) -> str:
    return format_date(moment, "iso")


def datetime_handler(args: Dict[str, Any]) -> Dict[str, Any]:
    """Handler for the ``datetime`` tool."""
    action = args.get("action")
    first = args.get("input")
    second = args.get("input2")
    fmt = args.get("format")
    tz_name = args.get("timezone")

    if action == "now":
        now = datetime.now(timezone.utc)
        return {
            "iso": _iso(now),
            "unix": int(now.timestamp()),
            "formatted": format_date(now, fmt, tz_name),
            "timezone": tz_name or "UTC",
        }

    if action == "parse":
        if not first:
            raise ValueError("Input is required for 'parse' action")
        parsed = parse_date(str(first))
        return {
            "input": first,
            "iso": _iso(parsed),
            "unix": int(parsed.timestamp()),
            "formatted": format_date(parsed, fmt, tz_name),
        }

    if action == "format":
        if not first:
            raise ValueError("Input is required for 'format' action")
        return {
            "input": first,
            "formatted": format_date(parse_date(str(first)), fmt, tz_name),
            "format": fmt or "datetime",
            "timezone": tz_name or "UTC",
        }

    if action == "diff":
        if not first or not second:
            raise ValueError("Both input and input2 are required for 'diff' action")
        date1, date2 = parse_date(str(first)), parse_date(str(second))
        diff_ms = int((date2 - date1).total_seconds() * 1000)
        diff_sec = abs(diff_ms / 1000)
        return {
            "date1": _iso(date1),
            "date2": _iso(date2),
            "difference": {
                "milliseconds": diff_ms,
                "seconds": round(diff_sec),
                "minutes": round(diff_sec / 60),
                "hours": round(diff_sec / 3600, 2),
                "days": round(diff_sec / 86400, 2),
            },
            "relative": relative_time(date2),
        }

    raise ValueError(f"Unknown action: {action}")


def register_datetime_tool(registry: ToolRegistry | None = None) -> None:
    """Register the datetime tool on *registry* (default registry when omitted)."""
    define_tool(
        "datetime",
        "Get current date/time, parse dates, format dates, or calculate time differences. "
        "Supports various formats and timezones.",
        {
            "action": {
                "type": "string",
                "description": "The action to perform: 'now' (get current time), 'parse' (parse a "
                "date string), 'format' (format a date), 'diff' (calculate difference between "
                "dates)",
                "enum": ["now", "parse", "format", "diff"],
                "required": True,
            },
            "input": {
                "type": "string",
                "description": "For 'parse'/'format': the date string to process. For 'diff': the "
                "first date. Accepts: ISO strings, Unix timestamps, 'now', 'today', 'tomorrow', "
                "'yesterday'",
            },
            "input2": {
                "type": "string",
                "description": "For 'diff': the second date to compare against",
            },
            "format": {
                "type": "string",
                "description": "Output format: 'date', 'time', 'datetime', 'iso', 'unix', "
                "'relative'",
                "enum": ["date", "time", "datetime", "iso", "unix", "relative"],
            },
            "timezone": {
                "type": "string",
                "description": "Timezone for formatting (e.g., 'America/New_York', "
                "'Europe/London', 'UTC')",
            },
        },
        datetime_handler,
        registry=registry,
        category="utility",
    )
