"""Address normalization for matching conversations to contacts."""

from __future__ import annotations

import re

import phonenumbers
from phonenumbers import NumberParseException, PhoneNumberFormat

DEFAULT_REGION = "US"

# Anything shorter is a carrier short code, not a person
MIN_PHONE_DIGITS = 7

_PHONE_CHARS = re.compile(r"^[+\d\s().\-]+$")
_NON_DIGITS = re.compile(r"\D")


def is_email(address: str) -> bool:
    """Check if an address looks like an email."""
    return "@" in address


def _parse_phone(address: str, region: str) -> phonenumbers.PhoneNumber | None:
    if not _PHONE_CHARS.match(address):
        return None
    if len(_NON_DIGITS.sub("", address)) < MIN_PHONE_DIGITS:
        return None
    try:
        number = phonenumbers.parse(address, region)
    except NumberParseException:
        return None
    if not phonenumbers.is_possible_number(number):
        return None
    return number


def canonical_key(raw_address: str | None, region: str = DEFAULT_REGION) -> str | None:
    """
    Map a raw address to the key used to match conversations.

    Emails are lowercased. Phone numbers are converted to E.164, with the
    country code of ``region`` added when the number has none.

    Returns None when the address cannot be attributed to one person
    (short codes, group identifiers, alphanumeric sender ids). Callers
    must keep such conversations separate rather than guess.
    """
    if not raw_address:
        return None
    address = raw_address.strip()
    if not address:
        return None

    if is_email(address):
        return address.lower()

    number = _parse_phone(address, region)
    if number is None:
        return None
    return phonenumbers.format_number(number, PhoneNumberFormat.E164)


def format_address(raw_address: str, region: str = DEFAULT_REGION) -> str:
    """Format an address for display, e.g. ``+15551230000`` -> ``(555) 123-0000``."""
    address = raw_address.strip()
    if not address or is_email(address):
        return address

    number = _parse_phone(address, region)
    if number is None:
        return address

    if phonenumbers.region_code_for_country_code(number.country_code) == region:
        return phonenumbers.format_number(number, PhoneNumberFormat.NATIONAL)
    return phonenumbers.format_number(number, PhoneNumberFormat.INTERNATIONAL)
