"""
Module for persisting user profiles and resolving credentials.
"""
import json
import logging
import os
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Tuple

from .errors import ConfigError

logger = logging.getLogger(__name__)

ENV_SERVER_URL = "IMMICH_SERVER_URL"
ENV_API_KEY = "IMMICH_API_KEY"


def default_config_path() -> Path:
    return Path.home() / ".immich" / "config.json"


@dataclass
class Profile:
    """Server URL and API key stored under a profile name."""
    server_url: str
    api_key: str


class ProfileStore:
    """Named profiles plus the default one, kept in a JSON file."""

    def __init__(self, path: Optional[Path] = None):
        self.path = path or default_config_path()
        self.current_user: Optional[str] = None
        self.users: Dict[str, Profile] = {}

    @classmethod
    def load(cls, path: Optional[Path] = None) -> "ProfileStore":
        """Load profiles from disk.

        A missing file yields an empty store.

        Args:
            path: Config file; defaults to ~/.immich/config.json

        Returns:
            The loaded store

        Raises:
            ConfigError: If the file exists but cannot be parsed
        """
        store = cls(path)
        if not store.path.exists():
            return store

        try:
            with open(store.path) as f:
                data = json.load(f)
            store.current_user = data.get("current_user")
            store.users = {
                name: Profile(server_url=entry["server_url"], api_key=entry["api_key"])
                for name, entry in data.get("users", {}).items()
            }
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
            raise ConfigError(f"Cannot read config file {store.path}: {e}") from e

        logger.debug(f"Loaded {len(store.users)} profiles from {store.path}")
        return store

    def save(self) -> None:
        """Write profiles to disk, creating the parent directory."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        data = {
            "current_user": self.current_user,
            "users": {name: asdict(profile) for name, profile in self.users.items()},
        }
        with open(self.path, "w") as f:
            json.dump(data, f, indent=2)
        logger.debug(f"Saved {len(self.users)} profiles to {self.path}")

    def add(self, name: str, server_url: str, api_key: str, make_default: bool = False) -> None:
        """Add or replace a profile. The first profile becomes the default."""
        if not name:
            raise ConfigError("Profile name cannot be empty")
        self.users[name] = Profile(server_url=server_url, api_key=api_key)
        if make_default or self.current_user is None:
            self.current_user = name

    def remove(self, name: str) -> None:
        if name not in self.users:
            raise ConfigError(f"User '{name}' not found.")
        del self.users[name]
        if self.current_user == name:
            self.current_user = None

    def set_default(self, name: str) -> None:
        if name not in self.users:
            raise ConfigError(f"User '{name}' not found.")
        self.current_user = name

    def get(self, name: str) -> Profile:
        try:
            return self.users[name]
        except KeyError:
            raise ConfigError(f"User '{name}' not found in config") from None

    def current(self) -> Optional[Tuple[str, Profile]]:
        if self.current_user and self.current_user in self.users:
            return self.current_user, self.users[self.current_user]
        return None

    def profiles(self) -> List[Tuple[str, Profile, bool]]:
        """List (name, profile, is_default) sorted by name."""
        return [
            (name, self.users[name], name == self.current_user)
            for name in sorted(self.users)
        ]


def resolve_credentials(store: ProfileStore,
                        server: Optional[str] = None,
                        key: Optional[str] = None,
                        user: Optional[str] = None,
                        environ: Optional[Mapping[str, str]] = None) -> Tuple[str, str]:
    """Pick the server URL and API key for a run.

    Each value is taken from the first source that has it, in order:
    explicit flags, the named profile, the environment, the default
    profile. The default profile is not consulted when a profile is
    named explicitly.

    Args:
        store: Loaded profile store
        server: --server flag
        key: --key flag
        user: --user flag
        environ: Environment mapping; defaults to os.environ

    Returns:
        (server_url, api_key) with any trailing slash removed from the URL

    Raises:
        ConfigError: If the named profile is missing or nothing supplies
            both values
    """
    environ = os.environ if environ is None else environ
    sources: List[Tuple[Optional[str], Optional[str]]] = [(server, key)]

    if user:
        profile = store.get(user)
        sources.append((profile.server_url, profile.api_key))
    sources.append((environ.get(ENV_SERVER_URL), environ.get(ENV_API_KEY)))
    if not user and (current := store.current()):
        sources.append((current[1].server_url, current[1].api_key))

    server_url = next((s for s, _ in sources if s), None)
    api_key = next((k for _, k in sources if k), None)
    if not server_url or not api_key:
        raise ConfigError(
            "No server/key available. Pass --server and --key, set "
            f"{ENV_SERVER_URL}/{ENV_API_KEY}, or add a profile with "
            "'immich-uploader user add'."
        )
    return server_url.rstrip("/"), api_key
