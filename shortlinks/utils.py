import secrets
import string
from datetime import datetime, timezone
from typing import Optional

ALPHABET = string.ascii_letters + string.digits
CODE_LENGTH = 7

UNKNOWN_IP = "unknown"

def generate_random_code(length: int = CODE_LENGTH) -> str:
    return "".join(secrets.choice(ALPHABET) for _ in range(length))

def format_rfc3339(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")

def utc_now_rfc3339() -> str:
    return format_rfc3339(datetime.now(timezone.utc))

def first_forwarded_ip(header_value: Optional[str]) -> Optional[str]:
    """First non-empty entry of an X-Forwarded-For style list."""
    if not header_value:
        return None
    for token in header_value.split(","):
        token = token.strip()
        if token:
            return token
    return None
