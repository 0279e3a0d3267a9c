"""
National identity number codec.

A 13-digit ID has the layout ``YYMMDD SSSS C A Z``:

    YYMMDD  date of birth
    SSSS    sequence number; 0000-4999 female, 5000-9999 male
    C       citizenship (0 citizen, anything else non-citizen)
    A       legacy digit, not interpreted
    Z       Luhn check digit over the first 12 digits

Everything here is pure and offline; ``today`` is injectable so the
century inference is deterministic in tests.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date

from signup.core.constants import Gender
from signup.errors import DecodeError

ID_LENGTH = 13
MALE_SEQUENCE_START = 5


@dataclass(frozen=True)
class IdentityFacts:
    """Facts derived from a valid national ID."""

    date_of_birth: date
    gender: Gender
    citizen: bool


def _is_digits(value: str) -> bool:
    # str.isdigit() accepts superscripts and other unicode digits
    return value.isascii() and value.isdigit()


def luhn_check_digit(payload: str) -> int:
    """Return the Luhn check digit for a string of digits."""
    if not _is_digits(payload):
        raise ValueError("Luhn payload must contain digits only")

    total = 0
    # Rightmost payload digit is doubled, then every second one to the left
    for position, char in enumerate(reversed(payload)):
        digit = int(char)
        if position % 2 == 0:
            digit *= 2
            if digit > 9:
                digit -= 9
        total += digit
    return (10 - total % 10) % 10


def validate(id_number: str | None) -> bool:
    """True when ``id_number`` is 13 digits with a correct check digit."""
    if not isinstance(id_number, str):
        return False
    if len(id_number) != ID_LENGTH or not _is_digits(id_number):
        return False
    return luhn_check_digit(id_number[:12]) == int(id_number[12])


def infer_century(two_digit_year: int, today: date | None = None) -> int:
    """
    Expand YY to a full year.

    YY less than or equal to the current two-digit year is read as 20YY,
    anything greater as 19YY.  People born 100 or more years ago decode
    a century late.
    """
    today = today or date.today()
    current = today.year % 100
    century = 2000 if two_digit_year <= current else 1900
    return century + two_digit_year


def decode(id_number: str, today: date | None = None) -> IdentityFacts:
    """
    Decode a national ID into birth date, gender and citizenship.

    Raises DecodeError for a wrong length, non-digits, a bad checksum or
    a birth date that does not exist on the calendar.
    """
    if not isinstance(id_number, str) or len(id_number) != ID_LENGTH:
        raise DecodeError("ID number must be exactly 13 digits", field="id_number")
    if not _is_digits(id_number):
        raise DecodeError("ID number must contain digits only", field="id_number")
    if not validate(id_number):
        raise DecodeError("ID number checksum is invalid", field="id_number")

    year = infer_century(int(id_number[0:2]), today)
    month = int(id_number[2:4])
    day = int(id_number[4:6])
    try:
        date_of_birth = date(year, month, day)
    except ValueError as exc:
        raise DecodeError(
            f"ID number encodes an invalid birth date ({year}-{month:02d}-{day:02d})",
            field="id_number",
        ) from exc

    gender = Gender.MALE if int(id_number[6]) >= MALE_SEQUENCE_START else Gender.FEMALE
    citizenship_digit = id_number[10]

    return IdentityFacts(
        date_of_birth=date_of_birth,
        gender=gender,
        citizen=citizenship_digit == "0",
    )


def try_decode(id_number: str | None, today: date | None = None) -> IdentityFacts | None:
    """Decode when possible, otherwise return None (used for auto-fill)."""
    if not id_number:
        return None
    try:
        return decode(id_number, today)
    except DecodeError:
        return None
