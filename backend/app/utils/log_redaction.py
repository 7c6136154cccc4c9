"""Utility for redacting sensitive data from logs."""

import re
from typing import Any

REDACTED = "***REDACTED***"

_CONTROL_CHARS = re.compile(r"[\r\n\t]+")


def sanitize_for_log(value: Any) -> str:
    """
    Neutralize control characters in untrusted values before logging them.

    Collapses CR/LF/TAB runs into a single space so a crafted state token,
    username or provider message cannot forge extra log lines.

    Args:
        value: Any value; converted with ``str()``

    Returns:
        Single-line string
    """
    return _CONTROL_CHARS.sub(" ", str(value))


def redact_dict_keys(data: dict[str, Any]) -> dict[str, Any]:
    """
    Redact specific sensitive keys in a dictionary.

    Keys that are redacted:
    - password, passwd, pwd
    - api_key, apikey, token, secret
    - authorization, bearer

    Args:
        data: Dictionary to redact

    Returns:
        Dictionary with sensitive values replaced with "***REDACTED***"
    """
    if not isinstance(data, dict):
        return data

    sensitive_keys = {
        "password", "passwd", "pwd",
        "api_key", "apikey", "token", "secret",
        "authorization", "bearer",
    }

    redacted = {}
    for key, value in data.items():
        key_lower = str(key).lower()

        if any(sensitive in key_lower for sensitive in sensitive_keys):
            redacted[key] = REDACTED
        elif isinstance(value, dict):
            redacted[key] = redact_dict_keys(value)
        elif isinstance(value, list):
            redacted[key] = [redact_dict_keys(item) if isinstance(item, dict) else item for item in value]
        else:
            redacted[key] = value

    return redacted
