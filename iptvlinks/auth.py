import base64
import binascii
import logging
import secrets
from typing import Optional, Tuple

from fastapi import Request
from fastapi.responses import PlainTextResponse
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)

PUBLIC_PATHS = {"/api/health"}
STREAM_PREFIX = "/stream/"


def parse_basic_auth(header: Optional[str]) -> Optional[Tuple[str, str]]:
    if not header:
        return None
    scheme, _, value = header.partition(" ")
    if scheme.lower() != "basic" or not value:
        return None
    try:
        decoded = base64.b64decode(value.strip(), validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return None
    user, sep, password = decoded.partition(":")
    if not sep:
        return None
    return user, password


class BasicAuthMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, username: str, password: str, protect_streams: bool = True):
        super().__init__(app)
        self.username = username
        self.password = password
        self.protect_streams = protect_streams

    def is_public(self, request: Request) -> bool:
        path = request.url.path
        if request.method == "OPTIONS" or path in PUBLIC_PATHS:
            return True
        return not self.protect_streams and path.startswith(STREAM_PREFIX)

    def check(self, header: Optional[str]) -> bool:
        creds = parse_basic_auth(header)
        if creds is None:
            return False
        user, password = creds
        user_ok = secrets.compare_digest(user.encode(), self.username.encode())
        pass_ok = secrets.compare_digest(password.encode(), self.password.encode())
        return user_ok and pass_ok

    async def dispatch(self, request: Request, call_next):
        if self.is_public(request) or self.check(request.headers.get("authorization")):
            return await call_next(request)
        logger.info("Rejected unauthenticated %s %s", request.method, request.url.path)
        return PlainTextResponse(
            "Authentication required",
            status_code=401,
            headers={"WWW-Authenticate": 'Basic realm="Secure Area"'},
        )
