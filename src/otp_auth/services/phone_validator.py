"""Phone validator — turns raw user input into a canonical PhoneNumber."""

from __future__ import annotations

import re

from otp_auth.errors import InvalidPhoneNumberError
from otp_auth.models.otp import PhoneNumber

NATIONAL_LENGTH = 10

# ASCII digits plus the separators people type; "+" only in front.
_ALLOWED = re.compile(r"^\+?[0-9 \t().\-]+$")


class PhoneValidator:
    """Pure normaliser for 10-digit mobile numbers.

    Accepted shapes (separators anywhere)::

        98765 43210        (bare national number)
        09876543210        (trunk prefix)
        +91 98765-43210    (country code, with or without "+")
        0091 9876543210    (international dialling prefix)

    Anything else raises :class:`InvalidPhoneNumberError`.
    """

    def __init__(self, country_code: str = "91", mobile_leading_digits: str = "6789") -> None:
        self._country_code = country_code
        self._national = re.compile(
            rf"^[{re.escape(mobile_leading_digits)}][0-9]{{{NATIONAL_LENGTH - 1}}}$"
        )

    def normalize(self, raw: str | None) -> PhoneNumber:
        if raw is None or not isinstance(raw, str):
            raise InvalidPhoneNumberError("Phone number is required")
        text = raw.strip()
        if not text or not _ALLOWED.match(text):
            raise InvalidPhoneNumberError("Phone number contains invalid characters")

        digits = re.sub(r"[^0-9]", "", text)
        national = self._strip_prefix(digits, international=text.startswith("+"))
        if national is None or not self._national.match(national):
            raise InvalidPhoneNumberError(
                "Invalid phone number format. Please enter a valid 10-digit mobile number."
            )
        return PhoneNumber(country_code=self._country_code, national_number=national)

    def _strip_prefix(self, digits: str, international: bool) -> str | None:
        if international:
            prefixes = (self._country_code,)
        elif len(digits) == NATIONAL_LENGTH:
            return digits
        else:
            prefixes = (self._country_code, "00" + self._country_code, "0")
        for prefix in prefixes:
            if len(digits) == NATIONAL_LENGTH + len(prefix) and digits.startswith(prefix):
                return digits[len(prefix):]
        return None


_default_validator = PhoneValidator()


def normalize_phone(raw: str | None) -> PhoneNumber:
    """Normalise with the default country code and mobile prefixes."""
    return _default_validator.normalize(raw)
