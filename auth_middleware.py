#!/usr/bin/env python3

import logging
from typing import Callable
from functools import wraps
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse
from starlette.requests import Request
from jwt_auth import JWTValidator

logger = logging.getLogger(__name__)


class DefaultRejectMiddleware(BaseHTTPMiddleware):
    """Reject responses from endpoints that declared no auth policy"""

    async def dispatch(self, request, call_next):
        response = await call_next(request)

        auth_explicitly_disabled = getattr(request.state, "auth_explicitly_disabled", False)
        auth_explicitly_required = getattr(request.state, "auth_explicitly_required", False)

        if not auth_explicitly_disabled and not auth_explicitly_required:
            return JSONResponse(
                {"error": "Endpoint requires explicit authentication configuration"},
                status_code=401,
            )

        return response


class AuthMiddleware(BaseHTTPMiddleware):
    """
    Extract Bearer tokens for the scope decorators.

    With an empty secret authentication is off and scoped endpoints are open.
    """

    def __init__(self, app, jwt_secret: str = ""):
        super().__init__(app)
        self.jwt_validator = JWTValidator(jwt_secret) if jwt_secret else None

    async def dispatch(self, request: Request, call_next):
        request.state.user = None
        request.state.jwt_token = None
        request.state.auth_enabled = self.jwt_validator is not None
        request.state.jwt_validator = self.jwt_validator

        if self.jwt_validator is not None:
            auth_header = request.headers.get("Authorization", "")
            if auth_header.startswith("Bearer "):
                request.state.jwt_token = auth_header[7:].strip() or None

        return await call_next(request)


def _split_args(args):
    # Handle both instance methods (self, request) and standalone functions (request)
    if len(args) == 2:
        return args[0], args[1]
    if len(args) == 1:
        return None, args[0]
    raise ValueError("Expected 1 or 2 positional arguments")


def noauth(func: Callable) -> Callable:
    """Decorator to explicitly allow unauthenticated access"""

    @wraps(func)
    async def wrapper(*args, **kwargs):
        self_arg, request = _split_args(args)
        request.state.auth_explicitly_disabled = True
        if self_arg is not None:
            return await func(self_arg, request)
        return await func(request)

    wrapper._no_auth_required = True
    return wrapper


def require_scope(scope: str) -> Callable:
    """Decorator requiring a valid token carrying `scope` whenever auth is enabled"""

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(*args, **kwargs):
            self_arg, request = _split_args(args)
            request.state.auth_explicitly_required = True

            if getattr(request.state, "auth_enabled", False):
                token = getattr(request.state, "jwt_token", None)
                if not token:
                    return JSONResponse({"error": "Authentication required"}, status_code=401)

                validator = request.state.jwt_validator
                is_valid, payload, error_msg = validator.validate_token(token)
                if not is_valid:
                    logger.warning(f"Rejected token: {error_msg}")
                    return JSONResponse(
                        {"error": f"Authentication failed: {error_msg}"}, status_code=401
                    )

                granted = str(payload.get("scope", "")).split()
                if scope not in granted:
                    return JSONResponse(
                        {"error": f"Insufficient scope. Required: {scope}, Got: {granted}"},
                        status_code=403,
                    )
                request.state.user = payload

            if self_arg is not None:
                return await func(self_arg, request)
            return await func(request)

        return wrapper

    return decorator
