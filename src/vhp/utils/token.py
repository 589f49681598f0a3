import secrets
import string
import time

_ALPHABET = string.ascii_lowercase + string.digits


def issue_vhp_token(now_ms: int | None = None) -> str:
    """Return a ``vhp_<epoch ms>_<9 random base36 chars>`` verification token."""
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    suffix = "".join(secrets.choice(_ALPHABET) for _ in range(9))
    return f"vhp_{now_ms}_{suffix}"
