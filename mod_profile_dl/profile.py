"""Profiles: a target game version and loader plus an ordered list of mods."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Iterable

from .mods import ModLoader, ModReference, mod_from_dict, mod_to_dict


class ProfileError(Exception):
    """Base exception for profile operations."""

    pass


class DuplicateModError(ProfileError):
    """Raised when a mod is already part of the profile."""

    pass


class ModNotFoundError(ProfileError):
    """Raised when a mod name given for removal matches no mod."""

    def __init__(self, missing: list[str]):
        self.missing = missing
        super().__init__(f"Mods not found in profile: {', '.join(missing)}")


@dataclass
class Profile:
    """
    A named set of mods resolved against one game version and loader.

    Mod order is the download order and the order of upgrade reports.
    `installed` maps a mod's key to the filename the last upgrade placed
    for it, so a later upgrade can replace that file.
    """

    name: str
    game_version: str
    mod_loader: ModLoader
    output_dir: Path
    mods: list[ModReference] = field(default_factory=list)
    installed: dict[str, str] = field(default_factory=dict)

    def has_mod(self, mod: ModReference) -> bool:
        return mod in self.mods

    def add_mod(self, mod: ModReference) -> None:
        """Append a mod, rejecting one already present from the same source."""
        if self.has_mod(mod):
            raise DuplicateModError(f"{mod.source} mod {mod} is already in profile '{self.name}'")
        self.mods.append(mod)

    def remove_mods(
        self, names: Iterable[str], name_of: Callable[[ModReference], str]
    ) -> list[ModReference]:
        """
        Remove mods by case-insensitive display name.

        Display names are looked up through name_of only as far as needed.
        If any name matches no mod, nothing is removed.

        Returns the removed mod references.
        """
        wanted = {n.lower(): n for n in names}
        matched: dict[str, ModReference] = {}

        for mod in self.mods:
            if len(matched) == len(wanted):
                break
            display = name_of(mod).lower()
            if display in wanted and display not in matched:
                matched[display] = mod

        missing = [original for lowered, original in wanted.items() if lowered not in matched]
        if missing:
            raise ModNotFoundError(missing)

        removed = list(matched.values())
        for mod in removed:
            self.remove_mod(mod)
        return removed

    def remove_mod(self, mod: ModReference) -> None:
        self.mods.remove(mod)
        self.installed.pop(mod.key, None)

    def record_installed(self, mod: ModReference, filename: str) -> None:
        self.installed[mod.key] = filename

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "game_version": self.game_version,
            "mod_loader": self.mod_loader.value,
            "output_dir": str(self.output_dir),
            "mods": [mod_to_dict(mod) for mod in self.mods],
            "installed": dict(self.installed),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Profile":
        return cls(
            name=data["name"],
            game_version=data["game_version"],
            mod_loader=ModLoader.parse(data["mod_loader"]),
            output_dir=Path(data["output_dir"]),
            mods=[mod_from_dict(m) for m in data.get("mods", [])],
            installed=dict(data.get("installed", {})),
        )
