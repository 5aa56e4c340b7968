"""Admin password generation for Azure Windows VMs.

Azure requires admin passwords of 12-123 characters covering at least 3 of
4 character classes (lowercase, uppercase, digit, symbol).

A candidate is drawn from the OS CSPRNG and base64-encoded. If it covers
fewer than 3 classes it gets exactly one repair pass:
- each missing class among lowercase, uppercase and digit gets one random
  position overwritten with a character of that class
- the symbol class is only injected when fewer than 2 of lowercase,
  uppercase and digit were present

Known weakness: two replacements can land on the same position, so a
repaired password is not re-checked and may still miss a class. Callers
relying on stricter guarantees must validate with meets_policy().
"""

import base64
import logging
import random
import secrets
import string
from dataclasses import dataclass

logger = logging.getLogger(__name__)

MIN_LENGTH = 12
MAX_LENGTH = 123
REQUIRED_CLASSES = 3

LOWERCASE = string.ascii_lowercase
UPPERCASE = string.ascii_uppercase
DIGITS = string.digits
SYMBOLS = "!@#$%^&*()-_=+[]{}|;:,.<>?"

_system_random = secrets.SystemRandom()


@dataclass(frozen=True)
class CharacterClasses:
    """Character-class coverage of a password."""

    lowercase: bool
    uppercase: bool
    digit: bool
    symbol: bool

    @property
    def alphanumeric_count(self) -> int:
        return sum((self.lowercase, self.uppercase, self.digit))

    @property
    def count(self) -> int:
        return self.alphanumeric_count + int(self.symbol)

    @property
    def meets_policy(self) -> bool:
        return self.count >= REQUIRED_CLASSES


def character_classes(password: str) -> CharacterClasses:
    """Report which of the four character classes appear in password."""
    return CharacterClasses(
        lowercase=any(c in LOWERCASE for c in password),
        uppercase=any(c in UPPERCASE for c in password),
        digit=any(c in DIGITS for c in password),
        symbol=any(not (c.isascii() and c.isalnum()) for c in password),
    )


def meets_policy(password: str) -> bool:
    """Check the Azure "3 of 4 character classes" rule."""
    return character_classes(password).meets_policy


def clamp_length(length: int) -> int:
    """Clamp a requested length into the Azure-accepted range."""
    return max(MIN_LENGTH, min(length, MAX_LENGTH))


def replace_random_char(password: str, alphabet: str, rng: random.Random | None = None) -> str:
    """Overwrite one random position of password with a random alphabet character."""
    rng = rng or _system_random
    index = rng.randrange(len(password))
    return password[:index] + rng.choice(alphabet) + password[index + 1 :]


def repair_password(candidate: str, rng: random.Random | None = None) -> str:
    """Apply the single repair pass to a candidate that fails the policy.

    Candidates that already meet the policy are returned unchanged. The
    result is not re-validated (see module docstring).
    """
    classes = character_classes(candidate)
    if classes.meets_policy:
        return candidate

    password = candidate
    if not classes.lowercase:
        password = replace_random_char(password, LOWERCASE, rng)
    if not classes.uppercase:
        password = replace_random_char(password, UPPERCASE, rng)
    if not classes.digit:
        password = replace_random_char(password, DIGITS, rng)
    if not classes.symbol and classes.alphanumeric_count < 2:
        password = replace_random_char(password, SYMBOLS, rng)

    return password


def _initial_candidate(length: int) -> str:
    return base64.b64encode(secrets.token_bytes(length)).decode("ascii")[:length]


def generate_password(length: int = MIN_LENGTH, rng: random.Random | None = None) -> str:
    """Generate an Azure-compatible admin password.

    Args:
        length: Requested length, clamped to [12, 123]
        rng: Random source for the repair pass (default: OS CSPRNG)

    Returns:
        Password of exactly clamp_length(length) characters
    """
    length = clamp_length(length)
    candidate = _initial_candidate(length)

    if not meets_policy(candidate):
        logger.debug("Generated password misses character classes, repairing")
        candidate = repair_password(candidate, rng)

    return candidate


__all__ = [
    "MAX_LENGTH",
    "MIN_LENGTH",
    "CharacterClasses",
    "character_classes",
    "clamp_length",
    "generate_password",
    "meets_policy",
    "repair_password",
]
