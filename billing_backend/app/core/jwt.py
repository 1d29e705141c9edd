"""
JWT token utilities for authentication.

This module provides functions for encoding and decoding JWT tokens.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any
from jose import JWTError, jwt
from billing_backend.app.core.config import settings


def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """
    Create a JWT access token.
    
    Tokens are normally issued by the identity provider; this helper exists
    for local tooling and tests.
    
    Args:
        data: Claims to encode (e.g. userId, handle, roles or scope)
        expires_delta: Optional custom expiration time
        
    Returns:
        Encoded JWT token string
        
    Example payload:
        {
            "userId": "1001",
            "handle": "alice",
            "roles": ["Administrator"],
            "iss": "https://api.topcoder.com",
            "exp": 1234567890
        }
    """
    to_encode = data.copy()
    
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(minutes=30)
    
    to_encode.setdefault("iss", settings.valid_issuers[0])
    to_encode.update({"exp": expire})
    encoded_jwt = jwt.encode(to_encode, settings.auth_secret, algorithm=settings.auth_algorithm)
    
    return encoded_jwt


def decode_access_token(token: str) -> Optional[Dict[str, Any]]:
    """
    Decode and validate a JWT access token.
    
    Checks signature, expiry and that the issuer is one of
    ``settings.valid_issuers``.
    
    Args:
        token: JWT token string to decode
        
    Returns:
        Decoded token payload if valid, None otherwise
    """
    try:
        payload = jwt.decode(
            token,
            settings.auth_secret,
            algorithms=[settings.auth_algorithm],
            options={"verify_aud": False},
        )
    except JWTError:
        return None
    
    if payload.get("iss") not in settings.valid_issuers:
        return None
    return payload
