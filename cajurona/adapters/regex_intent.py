"""
RegexIntentClassifier — deterministic keyword-based classifier.

No network, no model.  Recognises the Portuguese (and a few English)
phrases riders actually type in the carpool groups.
"""

import re
from dataclasses import dataclass
from datetime import date, time, timedelta

from cajurona.domain.intent import ACTION_PRIORITY, Action, Intent, IntentClassifier
from cajurona.domain.schedule import ALL_WEEKDAYS, TODAY_TOKEN, Weekday, scan_weekday_names

# "chego 7:20" is measured against this departure, not the group's own.
DEFAULT_DEPARTURE = time(7, 0)
MAX_DELAY_MINUTES = 120


@dataclass(frozen=True)
class _Rule:
    action: Action
    patterns: tuple[re.Pattern, ...]
    whole_message: bool = False   # greetings must be the entire message

    def matches(self, text: str) -> bool:
        if self.whole_message:
            return any(p.fullmatch(text) for p in self.patterns)
        return any(p.search(text) for p in self.patterns)


def _rx(*patterns: str) -> tuple[re.Pattern, ...]:
    return tuple(re.compile(p, re.IGNORECASE) for p in patterns)


_RULES = {
    rule.action: rule
    for rule in (
        _Rule("confirmar", _rx(
            # "não vou" is a cancellation, "vou atrasar" a delay
            r"(?<!não )(?<!nao )\b(vou|confirmad[oa]|confirmo|t[oô] dentro|estarei|participo)\b"
            r"(?!\s+(?:atras|demor|chegar))",
            r"\b(pode contar|conta comigo|bora|t[oô] indo)\b",
        )),
        _Rule("cancelar", _rx(
            r"\b(não vou|nao vou|cancela|fora|desisto|não posso|nao posso)\b",
            r"\b(não vai dar|nao vai dar|não dá|nao da|sem mim)\b",
        )),
        _Rule("atraso", _rx(
            r"\b(atras(?:o|a|ar|ei|ad[oa])|chego|demor(?:a|o|ar)|delay)\b",
            r"(\d{1,2})\s*(min|minutos?|h|hora)",
        )),
        _Rule("status", _rx(
            r"\b(quem vai|como ta|como tá|status|lista|confirmad[oa]s?)\b",
            r"\b(quem confirmou|quantos vão|quantos vao)\b",
        )),
        _Rule("saldo", _rx(
            r"\b(quanto devo|meu saldo|devo quanto|minha d[ií]vida)\b",
            r"\b(saldo|d[ée]bito|pendente|quanto tenho)\b",
        )),
        _Rule("ajuda", _rx(
            r"\b(ajuda|help|comandos?|menu|op[cç](?:oes|ões))\b",
        )),
        _Rule("saudacao", _rx(
            r"(oi|olá|ola|hey|bom dia|boa tarde|boa noite|e a[ií]|eae)",
        ), whole_message=True),
    )
}

_ORDERED_RULES = [_RULES[action] for action in ACTION_PRIORITY]

_TODAY = re.compile(r"\bhoje\b", re.IGNORECASE)
_TOMORROW = re.compile(r"\b(amanha|amanhã)\b", re.IGNORECASE)
_WHOLE_WEEK = re.compile(r"\b(semana toda|todos os dias|a semana inteira)\b", re.IGNORECASE)
_MINUTES = re.compile(r"(\d{1,2})\s*(?:min|minutos?)", re.IGNORECASE)
_ARRIVAL = re.compile(r"chego\s+(\d{1,2})[:h\s]?(\d{2})?", re.IGNORECASE)


def extract_days(text: str, today: date) -> list[str]:
    """Weekday tokens mentioned in the text, first-seen order, no duplicates."""
    if _WHOLE_WEEK.search(text):
        return list(ALL_WEEKDAYS)

    days: list[str] = []
    if _TODAY.search(text):
        weekday = Weekday.for_date(today)
        if weekday:
            days.append(weekday.token)
    if _TOMORROW.search(text):
        weekday = Weekday.for_date(today + timedelta(days=1))
        if weekday:
            days.append(weekday.token)
    for token in scan_weekday_names(text):
        if token not in days:
            days.append(token)
    return days


def extract_delay_minutes(text: str) -> int | None:
    match = _MINUTES.search(text)
    if match:
        return int(match.group(1))

    match = _ARRIVAL.search(text)
    if match:
        hour = int(match.group(1))
        minute = int(match.group(2) or 0)
        delay = (hour - DEFAULT_DEPARTURE.hour) * 60 + minute - DEFAULT_DEPARTURE.minute
        if 0 < delay < MAX_DELAY_MINUTES:
            return delay

    return None


class RegexIntentClassifier(IntentClassifier):
    """
    Keyword-based intent classifier.

    Rules are tried in ACTION_PRIORITY order; the first one that matches
    decides the action.  Days and delay minutes are then extracted from
    the same text.
    """

    def classify(self, text: object, today: date | None = None) -> Intent:
        if not text or not isinstance(text, str):
            return Intent.unknown()

        clean = text.strip()
        today = today or date.today()

        for rule in _ORDERED_RULES:
            if not rule.matches(clean):
                continue

            days = extract_days(clean, today)
            minutes = extract_delay_minutes(clean) if rule.action == "atraso" else None

            confidence = 0.8
            if days:
                confidence += 0.1
            if rule.action == "atraso" and minutes is not None:
                confidence += 0.1

            if not days and rule.action in ("confirmar", "cancelar"):
                days = [TODAY_TOKEN]

            return Intent(
                action=rule.action,
                days=days,
                minutes=minutes,
                confidence=round(min(confidence, 1.0), 2),
            )

        return Intent.unknown()
