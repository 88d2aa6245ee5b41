"""Naming, password and connection-string helpers for Atlas resources."""

from __future__ import annotations

import hashlib
import hmac
import os
import re
import secrets

_UPPER = "ABCDEFGHJKLMNPQRSTUVWXYZ"  # no I, O
_LOWER = "abcdefghjkmnpqrstuvwxyz"  # no i, l, o
_DIGITS = "23456789"  # no 0, 1
_SPECIAL = "!@#$%^&*-_=+"

# PBKDF2 parameters
_HASH_ITERATIONS = 260_000
_HASH_ALGO = "sha256"
_SALT_BYTES = 32


def generate_secure_password(length: int = 24) -> str:
    """Random password with at least one upper, lower, digit and special char."""
    if length < 10:
        raise ValueError("Atlas passwords must be at least 10 characters")
    chars = [
        secrets.choice(_UPPER),
        secrets.choice(_LOWER),
        secrets.choice(_DIGITS),
        secrets.choice(_SPECIAL),
    ]
    alphabet = _UPPER + _LOWER + _DIGITS + _SPECIAL
    chars.extend(secrets.choice(alphabet) for _ in range(length - len(chars)))
    secrets.SystemRandom().shuffle(chars)
    return "".join(chars)


def generate_salt() -> str:
    return os.urandom(_SALT_BYTES).hex()


def hash_password(password: str, salt: str) -> str:
    """Hash a password with PBKDF2-SHA256 under a hex-encoded salt."""
    dk = hashlib.pbkdf2_hmac(
        _HASH_ALGO,
        password.encode("utf-8"),
        bytes.fromhex(salt),
        _HASH_ITERATIONS,
    )
    return dk.hex()


def verify_password(password: str, salt: str, password_hash: str) -> bool:
    return hmac.compare_digest(hash_password(password, salt), password_hash)


def sanitize_cluster_name(name: str) -> str:
    """Lowercase alphanumerics and single hyphens, no edge hyphens, max 64."""
    cleaned = re.sub(r"[^a-z0-9-]", "-", name.lower())
    cleaned = re.sub(r"-+", "-", cleaned).strip("-")
    return cleaned[:64].rstrip("-")


def generate_project_name(event_id: str, team_id: str) -> str:
    """``mh-<last 6 of event id>-<last 6 of team id>``."""
    return sanitize_cluster_name(f"mh-{event_id[-6:]}-{team_id[-6:]}")


def add_app_name(connection_string: str | None, app_name: str) -> str | None:
    """Append ``appName=<app_name>`` for attribution; idempotent."""
    if not connection_string:
        return connection_string
    if f"appName={app_name}" in connection_string:
        return connection_string
    separator = "&" if "?" in connection_string else "?"
    return f"{connection_string}{separator}appName={app_name}"
