"""Secret redaction for anything that ends up in logs or on the console."""

from __future__ import annotations

from typing import Iterable, Optional

from pydantic import SecretStr

REDACTED = "[REDACTED]"


def _plain(secret: Optional[SecretStr | str]) -> str:
    if secret is None:
        return ""
    if isinstance(secret, SecretStr):
        return secret.get_secret_value()
    return secret


def redact_secrets(text: str, secrets: Iterable[Optional[SecretStr | str]]) -> str:
    """Replace every occurrence of each secret value in ``text``.

    Longer secrets are replaced first so a password that contains another
    password is not partially leaked.
    """
    values = sorted({_plain(s) for s in secrets if _plain(s)}, key=len, reverse=True)
    for value in values:
        text = text.replace(value, REDACTED)
    return text


def redact_mapping(data: dict, sensitive_keys: Iterable[str] = ("password", "secret", "token", "key")) -> dict:
    """Return a copy of ``data`` with values of sensitive-looking keys replaced."""
    keys = tuple(k.lower() for k in sensitive_keys)
    redacted = {}
    for key, value in data.items():
        if isinstance(value, dict):
            redacted[key] = redact_mapping(value, keys)
        elif any(k in key.lower() for k in keys) and value:
            redacted[key] = REDACTED
        else:
            redacted[key] = value
    return redacted
