"""Configuration management for carp-streamer."""

import logging
import os
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.box.com/2.0"
DEFAULT_UPLOAD_URL = "https://upload.box.com/api/2.0"


class Config:
    """Configuration loaded from environment variables and the config file.

    Environment variables take precedence over values stored in
    ``~/.config/carpstreamer/config``. The file holds ``KEY=VALUE`` lines.
    """

    def __init__(self, config_dir: Optional[Path] = None):
        """Initialize configuration.

        Args:
            config_dir: Directory holding the config file. Defaults to
                ~/.config/carpstreamer
        """
        self.config_dir = config_dir or Path.home() / ".config" / "carpstreamer"
        self._values: dict[str, str] = {}
        self._load()

    def get_config_path(self) -> Path:
        """Return the path of the config file."""
        return self.config_dir / "config"

    def get_cache_path(self) -> Path:
        """Return the default path of the path cache snapshot."""
        return self.config_dir / "cache.json"

    def _load(self) -> None:
        path = self.get_config_path()
        if not path.exists():
            return
        try:
            with open(path, encoding="utf-8") as f:
                for line in f:
                    line = line.strip()
                    if not line or line.startswith("#") or "=" not in line:
                        continue
                    key, value = line.split("=", 1)
                    self._values[key.strip()] = value.strip().strip("\"'")
        except OSError as e:
            logger.warning(f"Failed to read config file {path}: {e}")

    def _get(self, key: str) -> Optional[str]:
        return os.environ.get(key) or self._values.get(key)

    @property
    def access_token(self) -> Optional[str]:
        """Access token for the remote API."""
        return self._get("CARP_ACCESS_TOKEN")

    @property
    def api_url(self) -> str:
        """Base URL of the content API."""
        return self._get("CARP_API_URL") or DEFAULT_API_URL

    @property
    def upload_url(self) -> str:
        """Base URL of the upload API."""
        return self._get("CARP_UPLOAD_URL") or DEFAULT_UPLOAD_URL

    def is_configured(self) -> bool:
        """Return True if an access token is available."""
        return bool(self.access_token)

    def save_access_token(self, access_token: str) -> None:
        """Store the access token in the config file.

        Other keys already present in the file are preserved. The file is
        created with owner-only permissions.

        Args:
            access_token: Token to store
        """
        self._values["CARP_ACCESS_TOKEN"] = access_token
        self.config_dir.mkdir(parents=True, exist_ok=True)
        path = self.get_config_path()
        with open(path, "w", encoding="utf-8") as f:
            for key, value in sorted(self._values.items()):
                f.write(f"{key}={value}\n")
        path.chmod(0o600)
        logger.debug(f"Saved access token to {path}")


config = Config()
