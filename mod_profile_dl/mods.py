"""Mod references and mod loaders."""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Union


class ModLoader(str, Enum):
    """Mod loaders a profile can target."""

    FORGE = "forge"
    FABRIC = "fabric"
    QUILT = "quilt"
    NEOFORGE = "neoforge"

    @classmethod
    def parse(cls, value: str) -> "ModLoader":
        """Parse a loader name case-insensitively."""
        try:
            return cls(value.strip().lower())
        except ValueError:
            choices = ", ".join(loader.value for loader in cls)
            raise ModReferenceError(f"Unknown mod loader '{value}'. Expected one of: {choices}")


class ModReferenceError(Exception):
    """Raised when a mod reference cannot be parsed."""

    pass


@dataclass(frozen=True)
class ModrinthMod:
    """A Modrinth project, by project ID or slug."""

    mod_id: str

    @property
    def key(self) -> str:
        return f"modrinth:{self.mod_id}"

    @property
    def source(self) -> str:
        return "Modrinth"

    def __str__(self) -> str:
        return self.mod_id


@dataclass(frozen=True)
class GitHubRepo:
    """A GitHub repository whose releases carry the mod files."""

    owner: str
    name: str

    @property
    def key(self) -> str:
        return f"github:{self.owner}/{self.name}"

    @property
    def source(self) -> str:
        return "GitHub"

    def __str__(self) -> str:
        return f"{self.owner}/{self.name}"


@dataclass(frozen=True)
class CurseForgeProject:
    """A CurseForge project, by numeric project ID."""

    project_id: int

    @property
    def key(self) -> str:
        return f"curseforge:{self.project_id}"

    @property
    def source(self) -> str:
        return "CurseForge"

    def __str__(self) -> str:
        return str(self.project_id)


ModReference = Union[ModrinthMod, GitHubRepo, CurseForgeProject]


def mod_to_dict(mod: ModReference) -> dict[str, Any]:
    """Serialize a mod reference for the config file."""
    if isinstance(mod, ModrinthMod):
        return {"modrinth": {"mod_id": mod.mod_id}}
    if isinstance(mod, GitHubRepo):
        return {"github": {"owner": mod.owner, "name": mod.name}}
    if isinstance(mod, CurseForgeProject):
        return {"curseforge": {"project_id": mod.project_id}}
    raise ModReferenceError(f"Unsupported mod reference: {mod!r}")


def mod_from_dict(data: dict[str, Any]) -> ModReference:
    """
    Deserialize a mod reference written by mod_to_dict.

    Expects exactly one platform key: "modrinth", "github" or "curseforge".
    """
    if not isinstance(data, dict) or len(data) != 1:
        raise ModReferenceError(f"Invalid mod entry: {data!r}")

    platform, fields = next(iter(data.items()))
    try:
        if platform == "modrinth":
            return ModrinthMod(mod_id=str(fields["mod_id"]))
        if platform == "github":
            return GitHubRepo(owner=str(fields["owner"]), name=str(fields["name"]))
        if platform == "curseforge":
            return CurseForgeProject(project_id=int(fields["project_id"]))
    except (KeyError, TypeError, ValueError) as e:
        raise ModReferenceError(f"Invalid {platform} mod entry {fields!r}: {e}")

    raise ModReferenceError(f"Unknown mod platform: {platform}")
