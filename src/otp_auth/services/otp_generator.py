"""OTP generator — random numeric codes and their salted comparison secrets."""

from __future__ import annotations

import hashlib
import hmac
import secrets

_SALT_BYTES = 16
_SEPARATOR = "$"


class OtpGenerator:
    """Produces codes and one-way secrets.

    A secret has the form ``<salt hex>$<hmac-sha256 hex>``; the HMAC key is
    the server-side ``storage_secret`` so a leaked table alone is not
    enough to brute-force the 10**length code space offline.
    """

    def __init__(self, length: int = 6, storage_secret: str = "") -> None:
        if length < 4:
            raise ValueError("OTP length must be at least 4 digits")
        self._length = length
        self._key = storage_secret.encode()

    @property
    def length(self) -> int:
        return self._length

    def generate_code(self) -> str:
        return f"{secrets.randbelow(10**self._length):0{self._length}d}"

    def hash_code(self, code: str, salt: str | None = None) -> str:
        """Return a fresh ``salt$digest`` secret (new salt unless given)."""
        salt = salt or secrets.token_hex(_SALT_BYTES)
        digest = hmac.new(self._key, f"{salt}|{code}".encode(), hashlib.sha256).hexdigest()
        return f"{salt}{_SEPARATOR}{digest}"

    def issue(self) -> tuple[str, str]:
        """Return ``(plaintext_code, code_secret)``."""
        code = self.generate_code()
        return code, self.hash_code(code)

    def matches(self, code_secret: str, supplied: str) -> bool:
        """Constant-time check of *supplied* against a stored secret."""
        salt, sep, _ = code_secret.partition(_SEPARATOR)
        if not sep or not salt:
            return False
        candidate = self.hash_code(supplied.strip(), salt=salt)
        return hmac.compare_digest(candidate, code_secret)
