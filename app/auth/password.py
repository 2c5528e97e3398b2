"""
Password hashing with Argon2id and password policy checks.
"""

import re
import secrets
import string

from argon2 import PasswordHasher
from argon2.exceptions import VerifyMismatchError, InvalidHashError

# ~250ms per hash on modest hardware, 64 MB memory
ph = PasswordHasher(
    time_cost=3,
    memory_cost=65536,
    parallelism=4,
    hash_len=32,
    salt_len=16,
)

MIN_PASSWORD_LENGTH = 12
SPECIAL_CHARACTERS = "!@#$%^&*(),.?\":{}|<>_+-=[];'/\\~`"

COMMON_PASSWORDS = {
    "password123!", "admin123!", "letmein123!", "welcome123!", "changeme123!",
}


def hash_password(password: str) -> str:
    return ph.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    """Verify a password against its hash; malformed hashes never verify."""
    try:
        return ph.verify(password_hash, password)
    except (VerifyMismatchError, InvalidHashError):
        return False


def generate_temp_password(length: int = 16) -> str:
    """
    Generate a random password that satisfies the password policy.

    Used for new accounts created without a password.
    """
    length = max(length, MIN_PASSWORD_LENGTH)

    password = [
        secrets.choice(string.ascii_uppercase),
        secrets.choice(string.ascii_lowercase),
        secrets.choice(string.digits),
        secrets.choice("!@#$%^&*"),
    ]
    alphabet = string.ascii_letters + string.digits + "!@#$%^&*"
    password.extend(secrets.choice(alphabet) for _ in range(length - 4))
    secrets.SystemRandom().shuffle(password)

    return "".join(password)


def password_policy_violations(password: str) -> list[str]:
    """
    List the policy requirements `password` fails.

    Requirements: 12+ characters, upper and lower case letters, a digit,
    a special character, and not a well-known password.
    """
    issues = []
    if len(password) < MIN_PASSWORD_LENGTH:
        issues.append(f"at least {MIN_PASSWORD_LENGTH} characters")
    if not re.search(r"[A-Z]", password):
        issues.append("one uppercase letter")
    if not re.search(r"[a-z]", password):
        issues.append("one lowercase letter")
    if not re.search(r"\d", password):
        issues.append("one digit")
    if not any(c in SPECIAL_CHARACTERS for c in password):
        issues.append("one special character")
    return issues


def check_password_strength(password: str) -> str:
    """Pydantic validator body: return the password or raise ValueError."""
    issues = password_policy_violations(password)
    if issues:
        raise ValueError(f"Password must contain: {', '.join(issues)}")
    if password.lower() in COMMON_PASSWORDS:
        raise ValueError("Password is too common")
    return password
