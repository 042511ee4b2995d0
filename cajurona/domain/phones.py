"""
Phone number helpers.

Users are stored with whatever phone format the dashboard or the bot saw
first, so lookups try every plausible spelling of the same number.
"""

import re

import phonenumbers
from phonenumbers import NumberParseException, PhoneNumberFormat

DEFAULT_REGION = "BR"

_JID_SUFFIXES = ("@s.whatsapp.net", "@g.us", "@lid")


def only_digits(value: str) -> str:
    return re.sub(r"\D+", "", value or "")


def phone_from_jid(jid: str | None) -> str:
    """'5579998223366@s.whatsapp.net' -> '5579998223366'."""
    if not jid:
        return ""
    for suffix in _JID_SUFFIXES:
        jid = jid.replace(suffix, "")
    return only_digits(jid)


def _parse(phone: str, default_region: str):
    cleaned = re.sub(r"[^\d+]", "", phone or "")
    if not cleaned:
        return None
    try:
        return phonenumbers.parse(cleaned, default_region)
    except NumberParseException:
        return None


def normalize_phone(phone: str, default_region: str = DEFAULT_REGION) -> str:
    """E.164 digits ('5579998223366') or just the digits if unparseable."""
    number = _parse(phone, default_region)
    if number is not None and phonenumbers.is_possible_number(number):
        return only_digits(phonenumbers.format_number(number, PhoneNumberFormat.E164))
    return only_digits(phone)


def lookup_formats(phone: str, default_region: str = DEFAULT_REGION) -> list[str]:
    """
    Every spelling under which this number may have been stored.

    Covers raw digits, E.164 (with and without '+'), the national number,
    country code + national number, the Brazilian '55' prefix toggled, and
    Brazilian mobiles saved with or without the ninth digit.
    """
    formats: list[str] = []

    def add(value: str) -> None:
        if value and value not in formats:
            formats.append(value)

    cleaned = only_digits(phone)
    add(cleaned)

    number = _parse(phone, default_region)
    if number is not None:
        e164 = phonenumbers.format_number(number, PhoneNumberFormat.E164)
        add(e164.lstrip("+"))
        add(e164)
        national = str(number.national_number)
        add(national)
        add(f"{number.country_code}{national}")

    if cleaned.startswith("55") and len(cleaned) >= 12:
        add(cleaned[2:])
    elif not cleaned.startswith("55") and len(cleaned) >= 10:
        add("55" + cleaned)

    for variant in _ninth_digit_variants(formats):
        add(variant)

    return formats


def _ninth_digit_variants(formats: list[str]) -> list[str]:
    variants = []
    for fmt in formats:
        if fmt.startswith("55") and len(fmt) >= 12:
            prefix, ddd, number = "55", fmt[2:4], fmt[4:]
        elif 10 <= len(fmt) <= 11 and fmt.isdigit():
            prefix, ddd, number = "", fmt[:2], fmt[2:]
        else:
            continue

        if len(number) == 9 and number.startswith("9"):
            variants.append(prefix + ddd + number[1:])
            if prefix:
                variants.append(ddd + number[1:])
        elif len(number) == 8:
            variants.append(prefix + ddd + "9" + number)
            if prefix:
                variants.append(ddd + "9" + number)
    return variants


def same_phone(a: str, b: str) -> bool:
    """True when two spellings share at least one lookup format."""
    if not a or not b:
        return False
    return bool(set(lookup_formats(a)) & set(lookup_formats(b)))
