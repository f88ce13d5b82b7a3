"""RFC 5545 serialisation for the athlete calendar feed."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timezone

from coachkit.calendar.ical_feed import IcalEvent

CRLF = "\r\n"
MAX_LINE_OCTETS = 75
PRODID = "-//CoachKit//Athlete Calendar//EN"


def escape_text(value: str) -> str:
    """Escape a TEXT property value (backslash, semicolon, comma, newline)."""
    return (
        value.replace("\\", "\\\\")
        .replace(";", "\\;")
        .replace(",", "\\,")
        .replace("\r\n", "\\n")
        .replace("\n", "\\n")
        .replace("\r", "\\n")
    )


def fold_line(line: str) -> str:
    """Fold a content line at 75 octets without splitting UTF-8 sequences.

    Continuation lines start with a single space, which counts towards their
    75 octets.
    """
    if len(line.encode("utf-8")) <= MAX_LINE_OCTETS:
        return line

    parts: list[str] = []
    current = ""
    current_octets = 0
    limit = MAX_LINE_OCTETS
    for char in line:
        char_octets = len(char.encode("utf-8"))
        if current_octets + char_octets > limit:
            parts.append(current)
            current = ""
            current_octets = 0
            limit = MAX_LINE_OCTETS - 1
        current += char
        current_octets += char_octets
    parts.append(current)
    return (CRLF + " ").join(parts)


def format_utc(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y%m%dT%H%M%SZ")


def build_ics_calendar(
    events: Iterable[IcalEvent],
    cal_name: str,
    time_zone: str,
    now: datetime | None = None,
) -> str:
    """Build a VCALENDAR document.

    Args:
        events: Events to include, in order
        cal_name: Display name (X-WR-CALNAME)
        time_zone: Athlete timezone advertised via X-WR-TIMEZONE
        now: DTSTAMP for every event; current time when omitted

    Returns:
        The calendar body with CRLF line endings, ending in CRLF
    """
    stamp = format_utc(now or datetime.now(timezone.utc))
    lines = [
        "BEGIN:VCALENDAR",
        "VERSION:2.0",
        f"PRODID:{PRODID}",
        "CALSCALE:GREGORIAN",
        "METHOD:PUBLISH",
        f"X-WR-CALNAME:{escape_text(cal_name)}",
        f"X-WR-TIMEZONE:{time_zone}",
    ]
    for event in events:
        lines.extend(
            [
                "BEGIN:VEVENT",
                f"UID:{event.uid}",
                f"DTSTAMP:{stamp}",
                f"DTSTART:{format_utc(event.dt_start_utc)}",
                f"DTEND:{format_utc(event.dt_end_utc)}",
                f"SUMMARY:{escape_text(event.summary)}",
                f"DESCRIPTION:{escape_text(event.description)}",
                "END:VEVENT",
            ]
        )
    lines.append("END:VCALENDAR")
    return CRLF.join(fold_line(line) for line in lines) + CRLF
