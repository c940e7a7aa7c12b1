"""Settings for the storage stack, read from the environment.

A `.env` file in the working directory (or the one passed to
load_settings) is loaded first; real environment variables win over it.

    MONK_JOURNEY_DATA_DIR                directory of the local storage file
    MONK_JOURNEY_CLIENT_ID               OAuth client id
    MONK_JOURNEY_CLIENT_SECRET           OAuth client secret
    MONK_JOURNEY_FOLDER_NAME             remote save folder name
    MONK_JOURNEY_DRIVE_URL               remote API root
    MONK_JOURNEY_HTTP_TIMEOUT            seconds per HTTP request
    MONK_JOURNEY_AUTO_LOGIN_TIMEOUT      seconds for silent sign-in at startup
    MONK_JOURNEY_ENFORCED_LOGIN_TIMEOUT  seconds for the enforced login prompt
    MONK_JOURNEY_DEBOUNCE_MS             default debounce window
    MONK_JOURNEY_LOCAL_QUOTA             local storage size limit in bytes
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel

ENV_PREFIX = "MONK_JOURNEY_"


class SyncSettings(BaseModel):
    data_dir: Path = Path("data")
    client_id: str = ""
    client_secret: str = ""
    folder_name: str = "MonkJourneySaves"
    drive_url: str = "https://www.googleapis.com"
    http_timeout: float = 30.0
    auto_login_timeout: float = 5.0
    enforced_login_timeout: float = 15.0
    default_debounce_ms: int = 300
    local_quota_bytes: int | None = None

    @property
    def local_store_path(self) -> Path:
        return self.data_dir / "local-storage.json"


_ENV_FIELDS = {
    "DATA_DIR": "data_dir",
    "CLIENT_ID": "client_id",
    "CLIENT_SECRET": "client_secret",
    "FOLDER_NAME": "folder_name",
    "DRIVE_URL": "drive_url",
    "HTTP_TIMEOUT": "http_timeout",
    "AUTO_LOGIN_TIMEOUT": "auto_login_timeout",
    "ENFORCED_LOGIN_TIMEOUT": "enforced_login_timeout",
    "DEBOUNCE_MS": "default_debounce_ms",
    "LOCAL_QUOTA": "local_quota_bytes",
}


def load_settings(env_file: Path | None = None) -> SyncSettings:
    """Build settings from `.env` and the process environment.

    Unset or empty variables keep their defaults. Malformed values raise
    pydantic.ValidationError.
    """
    load_dotenv(env_file or Path.cwd() / ".env")
    fields = {}
    for suffix, field in _ENV_FIELDS.items():
        value = os.getenv(ENV_PREFIX + suffix, "")
        if value:
            fields[field] = value
    return SyncSettings(**fields)
