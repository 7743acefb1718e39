#!/usr/bin/env python3

import base64
import datetime
import secrets
import jwt
from typing import Tuple, Dict, Any, List, Optional

API_AUDIENCE = "sheets-log-api"
SCOPE_INGEST = "ingest"
SCOPE_STATUS = "status"
ALL_SCOPES = [SCOPE_INGEST, SCOPE_STATUS]


def _signing_key(secret: str) -> str:
    return secret[3:] if secret.startswith("sk_") else secret


def generate_jwt_secret() -> str:
    """Generate a signing secret that is safe to put in an environment variable"""
    secret_bytes = secrets.token_bytes(32)
    secret_key = base64.urlsafe_b64encode(secret_bytes).decode("utf-8").rstrip("=")
    return f"sk_{secret_key}"


def create_api_token(
    secret: str,
    scopes: Optional[List[str]] = None,
    expires_in_days: int = 30,
    name: Optional[str] = None,
) -> str:
    """Create a bearer token carrying a space-separated scope claim"""
    now = datetime.datetime.now(datetime.timezone.utc)
    payload = {
        "iat": now,
        "exp": now + datetime.timedelta(days=expires_in_days),
        "aud": API_AUDIENCE,
        "scope": " ".join(scopes or ALL_SCOPES),
    }
    if name:
        payload["name"] = name
    return jwt.encode(payload, _signing_key(secret), algorithm="HS256")


class JWTValidator:
    """Validate bearer tokens issued by create_api_token"""

    def __init__(self, signing_secret: str):
        self.signing_secret = _signing_key(signing_secret)

    def validate_token(self, token: str) -> Tuple[bool, Optional[Dict[str, Any]], Optional[str]]:
        """
        Returns:
            (is_valid, payload, error_message)
        """
        try:
            payload = jwt.decode(
                token, self.signing_secret, algorithms=["HS256"], audience=API_AUDIENCE
            )
        except jwt.ExpiredSignatureError:
            return False, None, "Token has expired"
        except jwt.InvalidTokenError:
            return False, None, "Invalid token"

        return True, payload, None
