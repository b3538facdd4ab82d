import secrets
import string
import time
from datetime import datetime, timezone
from typing import Optional


TOKEN_ALPHABET = string.ascii_letters + string.digits
TOKEN_LENGTH = 32


# ----------------------------
# Helpers
# ----------------------------
def now_ts() -> float:
    return time.time()


def to_iso(ts: float | None) -> Optional[str]:
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


def new_id() -> str:
    return secrets.token_hex(16)


def new_confirmation_token(length: int = TOKEN_LENGTH) -> str:
    return "".join(secrets.choice(TOKEN_ALPHABET) for _ in range(length))


def is_blank(value: Optional[str]) -> bool:
    return value is None or not str(value).strip()


def format_amount(amount: int) -> str:
    # es-CO grouping: 25000 -> 25.000
    return f"{int(amount):,}".replace(",", ".")
