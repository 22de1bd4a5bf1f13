"""Detail/error text sanitization to keep secrets out of reports."""

from __future__ import annotations

import os
import re

MAX_DETAIL_LENGTH = 2000


def sanitize_detail(message: str) -> str:
    """Redact secrets and local paths from text that ends up in a report."""
    if not message:
        return message

    sanitized = message
    # Bootloader and shadow password hashes
    sanitized = re.sub(r"grub\.pbkdf2\.sha512\.\S+", "[REDACTED_HASH]", sanitized)
    sanitized = re.sub(r"\$(?:1|5|6|y|2[aby]?)\$[^\s:]+", "[REDACTED_HASH]", sanitized)
    # Private key material
    sanitized = re.sub(
        r"-----BEGIN [A-Z ]*PRIVATE KEY-----[\s\S]*?-----END [A-Z ]*PRIVATE KEY-----",
        "[REDACTED_PRIVATE_KEY]",
        sanitized,
    )
    # Cloud credentials and tokens
    sanitized = re.sub(r"\b(?:AKIA|ASIA)[A-Z0-9]{16}\b", "[REDACTED_KEY]", sanitized)
    sanitized = re.sub(r"aws_secret_access_key\s*=\s*\S+", "aws_secret_access_key = [REDACTED]", sanitized)
    sanitized = re.sub(r"Bearer\s+\S+", "Bearer [REDACTED]", sanitized)
    sanitized = re.sub(r"Authorization:\s*\S+", "Authorization: [REDACTED]", sanitized)

    # Redact the operator's home path; /root is a hardening subject, not a leak
    home = os.environ.get("HOME") or os.environ.get("USERPROFILE") or ""
    if home and home not in ("/", "/root"):
        sanitized = sanitized.replace(home, "[USER_HOME]")

    if len(sanitized) > MAX_DETAIL_LENGTH:
        sanitized = sanitized[:MAX_DETAIL_LENGTH] + " [truncated]"

    return sanitized
