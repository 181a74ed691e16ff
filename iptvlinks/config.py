import os
from pathlib import Path
from typing import List, Literal, Mapping, Optional

from pydantic import BaseModel, Field

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/91.0.4472.124 Safari/537.36"
)

PLAYLIST_CONTENT_TYPES = [
    "application/vnd.apple.mpegurl",
    "audio/mpegurl",
    "application/x-mpegurl",
]


class StreamConfig(BaseModel):
    response_mode: Literal["redirect", "proxy", "json"] = "proxy"
    redirect_resolve_upstream: bool = False
    max_redirects: int = Field(default=5, ge=0)
    timeout_seconds: float = Field(default=30.0, gt=0)
    user_agent: str = DEFAULT_USER_AGENT
    accept: str = "*/*"
    playlist_content_types: List[str] = Field(default_factory=lambda: list(PLAYLIST_CONTENT_TYPES))
    chunk_size: int = 65536
    error_body_limit: int = 2048

    def request_headers(self) -> dict:
        # Referer and Origin are left out on purpose; some origins reject them.
        return {"User-Agent": self.user_agent, "Accept": self.accept}


class Settings(BaseModel):
    storage_backend: Literal["file", "firebase"] = "file"
    data_file: Path = Path("data/links.json")
    firebase_database_url: Optional[str] = None
    firebase_auth_token: Optional[str] = None
    basic_auth_user: Optional[str] = None
    basic_auth_password: Optional[str] = None
    protect_streams: bool = True
    host: str = "127.0.0.1"
    port: int = 8765
    log_level: str = "info"
    stream: StreamConfig = Field(default_factory=StreamConfig)

    @property
    def auth_enabled(self) -> bool:
        return bool(self.basic_auth_user and self.basic_auth_password)


# env var -> (section, field); section None means top level
ENV_FIELDS = {
    "LINKS_STORAGE_BACKEND": (None, "storage_backend"),
    "LINKS_DATA_FILE": (None, "data_file"),
    "FIREBASE_DATABASE_URL": (None, "firebase_database_url"),
    "FIREBASE_AUTH_TOKEN": (None, "firebase_auth_token"),
    "BASIC_AUTH_USER": (None, "basic_auth_user"),
    "BASIC_AUTH_PASSWORD": (None, "basic_auth_password"),
    "LINKS_PROTECT_STREAMS": (None, "protect_streams"),
    "LINKS_HOST": (None, "host"),
    "LINKS_PORT": (None, "port"),
    "LINKS_LOG_LEVEL": (None, "log_level"),
    "STREAM_RESPONSE_MODE": ("stream", "response_mode"),
    "STREAM_REDIRECT_RESOLVE_UPSTREAM": ("stream", "redirect_resolve_upstream"),
    "STREAM_MAX_REDIRECTS": ("stream", "max_redirects"),
    "STREAM_TIMEOUT": ("stream", "timeout_seconds"),
    "STREAM_USER_AGENT": ("stream", "user_agent"),
}


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    """Build Settings from environment variables, leaving unset keys at their defaults.

    pydantic handles the string coercion ("true", "5", "12.5"), so a bad value
    fails loudly here instead of deep inside a request.
    """
    environ = os.environ if environ is None else environ
    data: dict = {}
    stream: dict = {}
    for key, (section, field) in ENV_FIELDS.items():
        value = environ.get(key)
        if value is None or value == "":
            continue
        if section == "stream":
            stream[field] = value
        else:
            data[field] = value
    if stream:
        data["stream"] = stream
    return Settings.model_validate(data)
