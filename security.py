import bcrypt
from typing import Optional
from constants import BCRYPT_ROUNDS

# bcrypt only looks at the first 72 bytes and recent releases refuse longer input
BCRYPT_MAX_BYTES = 72


def password_too_long(password: str) -> bool:
    return len(password.encode("utf-8")) > BCRYPT_MAX_BYTES


def hash_password(password: str, rounds: int = BCRYPT_ROUNDS) -> str:
    """Return a bcrypt hash of the password. The plaintext is never stored."""
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def check_password(password_hash: Optional[str], candidate: Optional[str]) -> bool:
    """Verify a candidate against a stored hash.

    A missing hash means the room is open and every candidate verifies.
    """
    if not password_hash:
        return True
    candidate = candidate or ""
    if password_too_long(candidate):
        return False
    try:
        return bcrypt.checkpw(candidate.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # stored value is not a bcrypt hash
        return False


def is_author(stored_username: Optional[str], claimed_username: Optional[str]) -> bool:
    """Authorship check gating message edit and delete.

    Display names are free text supplied by the client, so this is plain string
    equality. Swap this out when real accounts exist.
    """
    if stored_username is None or claimed_username is None:
        return False
    return stored_username == claimed_username
