"""
Security Utilities
JWT session tokens, OAuth token encryption and input sanitization
"""

import base64
import hashlib
import html
import logging
from datetime import datetime, timedelta
from functools import lru_cache
from typing import Any, Optional

# Input sanitization
import bleach

# Encryption at rest for third-party OAuth tokens
from cryptography.fernet import Fernet, InvalidToken

# Token generation and validation
from jose import JWTError
from jose import jwt as jose_jwt

from .config import JWT_ALGORITHM, JWT_EXPIRE_MINUTES, SECRET_KEY

logger = logging.getLogger(__name__)


# ============================================================================
# SESSION TOKENS
# ============================================================================


def create_jwt_token(data: dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """
    Create a JWT token

    Args:
        data: Data to encode in the token (``sub`` must be the user's open_id)
        expires_delta: Token expiration time (default JWT_EXPIRE_MINUTES)
    """
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.utcnow() + expires_delta
    else:
        expire = datetime.utcnow() + timedelta(minutes=JWT_EXPIRE_MINUTES)

    to_encode.update({"exp": expire})
    return jose_jwt.encode(to_encode, SECRET_KEY, algorithm=JWT_ALGORITHM)


def verify_jwt_token(token: str) -> Optional[dict[str, Any]]:
    """
    Verify and decode a JWT token

    Returns:
        Decoded payload if valid, None if invalid or expired
    """
    try:
        return jose_jwt.decode(token, SECRET_KEY, algorithms=[JWT_ALGORITHM])
    except JWTError as e:
        logger.warning(f"JWT verification failed: {e}")
        return None


# ============================================================================
# TOKEN ENCRYPTION
# ============================================================================


@lru_cache(maxsize=1)
def get_token_cipher() -> Fernet:
    """Fernet cipher keyed from SECRET_KEY (32-byte SHA-256 digest, urlsafe base64)"""
    key = base64.urlsafe_b64encode(hashlib.sha256(SECRET_KEY.encode()).digest())
    return Fernet(key)


def encrypt_token(token: str) -> str:
    return get_token_cipher().encrypt(token.encode()).decode()


def decrypt_token(encrypted: str) -> Optional[str]:
    """Decrypt a stored token. Returns None if it was encrypted with another key"""
    try:
        return get_token_cipher().decrypt(encrypted.encode()).decode()
    except InvalidToken:
        logger.error("❌ Stored token could not be decrypted (SECRET_KEY changed?)")
        return None


# ============================================================================
# INPUT SANITIZATION
# ============================================================================


def sanitize_text(value: Optional[str]) -> Optional[str]:
    """
    Strip all HTML from free text before it is stored.

    Text is stored unescaped so it never grows past the validated length.
    Cleaning repeats until stable so escaped markup cannot decode into tags.
    """
    if value is None:
        return None
    text = value
    for _ in range(5):
        cleaned = html.unescape(bleach.clean(text, tags=[], attributes={}, strip=True))
        if cleaned == text:
            break
        text = cleaned
    return text.strip()


# ============================================================================
# AUDIT LOGGING
# ============================================================================


def log_security_event(
    event_type: str,
    user_id: Optional[str] = None,
    ip_address: Optional[str] = None,
    details: Optional[dict[str, Any]] = None,
):
    """
    Log security-related events

    Args:
        event_type: Type of security event (failed_auth, token_revoked, ...)
        user_id: User identifier
        ip_address: Client IP address
        details: Additional event details
    """
    log_entry = {
        "timestamp": datetime.utcnow().isoformat(),
        "event_type": event_type,
        "user_id": user_id,
        "ip_address": ip_address,
        "details": details or {},
    }
    logger.info(f"SECURITY_EVENT: {log_entry}")


def mask_sensitive_data(data: str, visible_chars: int = 4) -> str:
    """
    Mask sensitive data for logging/display

    Args:
        data: Sensitive data to mask
        visible_chars: Number of characters to show at the end
    """
    if len(data) <= visible_chars:
        return "*" * len(data)

    return "*" * (len(data) - visible_chars) + data[-visible_chars:]
