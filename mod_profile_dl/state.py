"""Persistent profile set and active profile selection."""

import json
import os
import sys
import tempfile
from pathlib import Path
from typing import Any

import click

from .log_utils import logger
from .mods import ModLoader, ModReferenceError
from .profile import Profile, ProfileError

APP_NAME = "mod-profile-dl"
CONFIG_FILENAME = "config.json"
CONFIG_ENV_VAR = "MOD_PROFILE_DL_CONFIG"


class ConfigError(Exception):
    """Raised when config file operations fail."""

    pass


class ProfileExistsError(ProfileError):
    """Raised when a profile name is already taken."""

    pass


class ProfileNotFoundError(ProfileError):
    """Raised when no profile has the requested name."""

    pass


class NoActiveProfileError(ProfileError):
    """Raised when an operation needs a profile and none exists."""

    pass


def default_config_path() -> Path:
    """Config file location, honouring MOD_PROFILE_DL_CONFIG."""
    override = os.environ.get(CONFIG_ENV_VAR)
    if override:
        return Path(override)
    return Path(click.get_app_dir(APP_NAME)) / CONFIG_FILENAME


def default_mods_dir() -> Path:
    """The vanilla launcher's mods directory for this platform."""
    if sys.platform == "win32":
        return Path(os.environ.get("APPDATA", Path.home())) / ".minecraft" / "mods"
    if sys.platform == "darwin":
        return Path.home() / "Library" / "Application Support" / "minecraft" / "mods"
    return Path.home() / ".minecraft" / "mods"


class Config:
    """
    The set of profiles and which one is active.

    While at least one profile exists exactly one of them is active.
    """

    def __init__(self, path: Path | None = None):
        self.path = Path(path) if path else default_config_path()
        self.profiles: list[Profile] = []
        self.active_index: int | None = None

    def load(self) -> None:
        """Load config from file. A missing file means no profiles."""
        if not self.path.exists():
            self.profiles = []
            self.active_index = None
            return

        try:
            with open(self.path) as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            raise ConfigError(f"Invalid config file {self.path}: {e}")

        try:
            self.profiles = [Profile.from_dict(p) for p in data.get("profiles", [])]
        except (KeyError, TypeError, ModReferenceError) as e:
            raise ConfigError(f"Invalid profile in {self.path}: {e}")

        active = data.get("active_profile")
        if self.profiles:
            if not isinstance(active, int) or not 0 <= active < len(self.profiles):
                active = 0
            self.active_index = active
        else:
            self.active_index = None

    def save(self) -> None:
        """Write config atomically."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        data = self.to_dict()

        fd, temp_name = tempfile.mkstemp(dir=self.path.parent, prefix="tmp-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            os.replace(temp_name, self.path)
        except OSError as e:
            raise ConfigError(f"Could not write {self.path}: {e}")
        finally:
            if os.path.exists(temp_name):
                os.remove(temp_name)
        logger.debug(f"Saved config to {self.path}")

    @property
    def active(self) -> Profile:
        if self.active_index is None or not self.profiles:
            raise NoActiveProfileError("No profiles exist. Create one with 'profile create'.")
        return self.profiles[self.active_index]

    def get_profile(self, name: str) -> Profile | None:
        for profile in self.profiles:
            if profile.name == name:
                return profile
        return None

    def _index_of(self, name: str) -> int:
        for i, profile in enumerate(self.profiles):
            if profile.name == name:
                return i
        raise ProfileNotFoundError(f"No profile named '{name}'")

    def create_profile(
        self,
        name: str,
        game_version: str,
        mod_loader: ModLoader,
        output_dir: Path,
    ) -> Profile:
        """Add a profile and make it active."""
        if self.get_profile(name) is not None:
            raise ProfileExistsError(f"A profile named '{name}' already exists")
        profile = Profile(
            name=name,
            game_version=game_version,
            mod_loader=mod_loader,
            output_dir=Path(output_dir),
        )
        self.profiles.append(profile)
        self.active_index = len(self.profiles) - 1
        return profile

    def delete_profile(self, name: str | None = None) -> Profile:
        """
        Delete the named profile, or the active one.

        Deleting the active profile makes the first remaining profile active,
        or none if the set is empty. Deleting another profile keeps the
        current selection.
        """
        index = self._index_of(name if name is not None else self.active.name)
        removed = self.profiles.pop(index)
        if not self.profiles:
            self.active_index = None
        elif index == self.active_index:
            self.active_index = 0
        elif self.active_index is not None and index < self.active_index:
            self.active_index -= 1
        return removed

    def switch_profile(self, name: str) -> Profile:
        self.active_index = self._index_of(name)
        return self.active

    def configure_profile(
        self,
        game_version: str | None = None,
        mod_loader: ModLoader | None = None,
        name: str | None = None,
        output_dir: Path | None = None,
    ) -> Profile:
        """Change any subset of the active profile's settings."""
        profile = self.active
        if name is not None and name != profile.name:
            if self.get_profile(name) is not None:
                raise ProfileExistsError(f"A profile named '{name}' already exists")
            profile.name = name
        if game_version is not None:
            profile.game_version = game_version
        if mod_loader is not None:
            profile.mod_loader = mod_loader
        if output_dir is not None:
            profile.output_dir = Path(output_dir)
        return profile

    def to_dict(self) -> dict[str, Any]:
        return {
            "active_profile": self.active_index,
            "profiles": [p.to_dict() for p in self.profiles],
        }
