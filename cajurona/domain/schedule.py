"""
Weekday tokens and calendar helpers shared by every date-resolution path.

Day tokens are the short Portuguese names the bot speaks ("seg" .. "sex")
plus the relative token "hoje".  Saturday and Sunday are never
representable: carpool groups only ride on weekdays.
"""

import re
from datetime import date, datetime, time, timedelta
from enum import IntEnum

TODAY_TOKEN = "hoje"


class Weekday(IntEnum):
    """Carpool weekdays, numbered like date.isoweekday() (Monday=1)."""

    SEG = 1
    TER = 2
    QUA = 3
    QUI = 4
    SEX = 5

    @property
    def token(self) -> str:
        return self.name.lower()

    @property
    def full_name(self) -> str:
        return _FULL_NAMES[self]

    @property
    def aliases(self) -> tuple[str, ...]:
        return _ALIASES[self]

    @classmethod
    def from_token(cls, token: str) -> "Weekday | None":
        try:
            return cls[token.upper()]
        except KeyError:
            return None

    @classmethod
    def for_date(cls, day: date) -> "Weekday | None":
        """Weekday of a calendar date, or None on weekends."""
        try:
            return cls(day.isoweekday())
        except ValueError:
            return None


_FULL_NAMES = {
    Weekday.SEG: "Segunda",
    Weekday.TER: "Terça",
    Weekday.QUA: "Quarta",
    Weekday.QUI: "Quinta",
    Weekday.SEX: "Sexta",
}

_ALIASES = {
    Weekday.SEG: ("seg", "segunda", "monday", "mon"),
    Weekday.TER: ("ter", "terca", "terça", "tuesday", "tue"),
    Weekday.QUA: ("qua", "quarta", "wednesday", "wed"),
    Weekday.QUI: ("qui", "quinta", "thursday", "thu"),
    Weekday.SEX: ("sex", "sexta", "friday", "fri"),
}

ALL_WEEKDAYS = [d.token for d in Weekday]

# Whole words only, so "quanto" or "aqui" never read as "qua"/"qui".
# "segunda-feira" and plurals ("às quintas") still count.
_ALIAS_PATTERNS = {
    d: re.compile(r"\b(?:" + "|".join(d.aliases) + r")s?\b", re.IGNORECASE)
    for d in Weekday
}


def scan_weekday_names(text: str) -> list[str]:
    """Literal weekday names mentioned in the text, Monday first."""
    return [d.token for d in Weekday if _ALIAS_PATTERNS[d].search(text)]


def resolve_day(token: str, today: date) -> date | None:
    """Map a day token to the soonest matching date on or after today."""
    if token == TODAY_TOKEN:
        return today
    weekday = Weekday.from_token(token)
    if weekday is None:
        return None
    return today + timedelta(days=(weekday - today.isoweekday()) % 7)


def day_label(token: str) -> str:
    weekday = Weekday.from_token(token)
    return weekday.full_name if weekday else token


def parse_clock(value: str) -> time:
    """Parse "HH:MM" or "HH:MM:SS" as stored for departure times."""
    parts = [int(p) for p in value.strip().split(":")]
    return time(parts[0], parts[1] if len(parts) > 1 else 0)


def add_minutes(clock: str, minutes: int) -> str:
    """
    Add minutes to an "HH:MM" clock.  Minutes roll into hours but hours
    never roll into the next day ("23:50" + 30 -> "24:20").
    """
    start = parse_clock(clock)
    total = start.minute + minutes
    return f"{start.hour + total // 60:02d}:{total % 60:02d}"


def at_clock(day: date, clock: str) -> datetime:
    return datetime.combine(day, parse_clock(clock))
