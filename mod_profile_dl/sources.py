"""Source adapters that turn platform release listings into candidate files."""

import re
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterator

from .api import (
    APIError,
    CurseForgeAPI,
    GitHubAPI,
    MalformedResponseError,
    ModrinthAPI,
    NotFoundError,
    RateLimitedError,
)
from .log_utils import logger
from .mods import CurseForgeProject, GitHubRepo, ModLoader, ModReference, ModrinthMod

GAME_VERSION_RE = re.compile(r"(?<![\d.])(\d+\.\d+(?:\.\d+)?)(?!\.?\d)")
NAME_TOKEN_RE = re.compile(r"[a-z0-9]+")


@dataclass(frozen=True)
class CandidateFile:
    """A downloadable file offered by a platform for one mod."""

    file_id: str
    url: str
    game_versions: frozenset[str]
    loaders: frozenset[ModLoader]
    published: datetime
    label: str
    size: int | None = None


@dataclass
class ModDetails:
    """Display metadata for a mod."""

    name: str
    summary: str = ""
    downloads: int | None = None
    url: str = ""


class FetchErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    RATE_LIMITED = "rate_limited"
    NETWORK = "network"
    MALFORMED_RESPONSE = "malformed_response"


class FetchError(Exception):
    """Raised when a source adapter cannot list a mod's files."""

    def __init__(self, kind: FetchErrorKind, message: str):
        self.kind = kind
        super().__init__(message)


@contextmanager
def _fetch_errors(mod: ModReference) -> Iterator[None]:
    """Translate API and decoding errors into FetchError."""
    try:
        yield
    except NotFoundError as e:
        raise FetchError(FetchErrorKind.NOT_FOUND, f"{mod.source} mod {mod} not found: {e}")
    except RateLimitedError as e:
        raise FetchError(FetchErrorKind.RATE_LIMITED, f"{mod.source}: {e}")
    except MalformedResponseError as e:
        raise FetchError(FetchErrorKind.MALFORMED_RESPONSE, f"{mod.source}: {e}")
    except APIError as e:
        raise FetchError(FetchErrorKind.NETWORK, f"{mod.source}: {e}")
    except (KeyError, TypeError, ValueError) as e:
        raise FetchError(
            FetchErrorKind.MALFORMED_RESPONSE,
            f"{mod.source} returned unexpected data for {mod}: {e}",
        )


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO 8601 timestamp, treating naive values as UTC."""
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_loaders(names: list[str]) -> frozenset[ModLoader]:
    """Map platform loader names onto ModLoader, dropping unknown names."""
    loaders = set()
    for name in names:
        try:
            loaders.add(ModLoader(str(name).lower()))
        except ValueError:
            continue
    return frozenset(loaders)


class ModrinthSource:
    """Candidate files from Modrinth versions."""

    def __init__(self, api: ModrinthAPI | None = None):
        self.api = api or ModrinthAPI()

    def fetch(self, mod: ModrinthMod) -> list[CandidateFile]:
        with _fetch_errors(mod):
            versions = self.api.get_versions(mod.mod_id)
            candidates = []
            for version in versions:
                candidate = self._to_candidate(version)
                if candidate is not None:
                    candidates.append(candidate)
            return candidates

    def _to_candidate(self, version: dict[str, Any]) -> CandidateFile | None:
        files = version.get("files") or []
        if not files:
            return None
        primary = next((f for f in files if f.get("primary")), files[0])

        raw_loaders = version.get("loaders") or []
        loaders = parse_loaders(raw_loaders)
        if raw_loaders and not loaders:
            # Only loaders this tool cannot target (plugins, datapacks, ...)
            return None

        return CandidateFile(
            file_id=str(version["id"]),
            url=primary["url"],
            game_versions=frozenset(version.get("game_versions") or []),
            loaders=loaders,
            published=parse_timestamp(version["date_published"]),
            label=primary["filename"],
            size=primary.get("size"),
        )

    def details(self, mod: ModrinthMod) -> ModDetails:
        with _fetch_errors(mod):
            project = self.api.get_project(mod.mod_id)
            return ModDetails(
                name=project["title"],
                summary=project.get("description") or "",
                downloads=project.get("downloads"),
                url=f"https://modrinth.com/mod/{project.get('slug', mod.mod_id)}",
            )


class GitHubSource:
    """
    Candidate files from GitHub release assets.

    GitHub has no compatibility metadata, so game versions and loaders are
    read from the asset filename. An asset naming no loader is treated as
    loader-agnostic.
    """

    def __init__(self, api: GitHubAPI | None = None):
        self.api = api or GitHubAPI()

    def fetch(self, mod: GitHubRepo) -> list[CandidateFile]:
        with _fetch_errors(mod):
            releases = self.api.get_releases(mod.owner, mod.name)
            candidates = []
            for release in releases:
                if release.get("draft"):
                    continue
                for asset in release.get("assets") or []:
                    candidate = self._to_candidate(release, asset)
                    if candidate is not None:
                        candidates.append(candidate)
            return candidates

    def _to_candidate(self, release: dict[str, Any], asset: dict[str, Any]) -> CandidateFile | None:
        name = asset["name"]
        lowered = name.lower()
        if not lowered.endswith(".jar") or lowered.endswith(("-sources.jar", "-dev.jar")):
            return None

        published = asset.get("updated_at") or release.get("published_at") or asset["created_at"]
        return CandidateFile(
            file_id=str(asset["id"]),
            url=asset["browser_download_url"],
            game_versions=frozenset(GAME_VERSION_RE.findall(name)),
            loaders=parse_loaders(NAME_TOKEN_RE.findall(lowered)),
            published=parse_timestamp(published),
            label=name,
            size=asset.get("size"),
        )

    def details(self, mod: GitHubRepo) -> ModDetails:
        with _fetch_errors(mod):
            repo = self.api.get_repo(mod.owner, mod.name)
            return ModDetails(
                name=repo["name"],
                summary=repo.get("description") or "",
                downloads=None,
                url=repo.get("html_url", ""),
            )


class CurseForgeSource:
    """Candidate files from CurseForge project files."""

    def __init__(self, api: CurseForgeAPI | None = None):
        self.api = api or CurseForgeAPI()

    def fetch(self, mod: CurseForgeProject) -> list[CandidateFile]:
        with _fetch_errors(mod):
            files = self.api.get_files(mod.project_id)
            candidates = []
            for file_info in files:
                candidate = self._to_candidate(file_info)
                if candidate is not None:
                    candidates.append(candidate)
            return candidates

    def _to_candidate(self, file_info: dict[str, Any]) -> CandidateFile | None:
        url = file_info.get("downloadUrl")
        if not url:
            # Author disabled third-party downloads for this file
            logger.debug(f"Skipping CurseForge file {file_info.get('id')} without a download URL")
            return None

        tags = [str(tag) for tag in file_info.get("gameVersions") or []]
        game_versions = frozenset(tag for tag in tags if GAME_VERSION_RE.fullmatch(tag))
        return CandidateFile(
            file_id=str(file_info["id"]),
            url=url,
            game_versions=game_versions,
            loaders=parse_loaders(tags),
            published=parse_timestamp(file_info["fileDate"]),
            label=file_info["fileName"],
            size=file_info.get("fileLength"),
        )

    def details(self, mod: CurseForgeProject) -> ModDetails:
        with _fetch_errors(mod):
            data = self.api.get_mod(mod.project_id)
            return ModDetails(
                name=data["name"],
                summary=data.get("summary") or "",
                downloads=data.get("downloadCount"),
                url=(data.get("links") or {}).get("websiteUrl", ""),
            )


@dataclass
class SourceRegistry:
    """Dispatches a mod reference to the adapter for its platform."""

    modrinth: ModrinthSource = field(default_factory=ModrinthSource)
    github: GitHubSource = field(default_factory=GitHubSource)
    curseforge: CurseForgeSource = field(default_factory=CurseForgeSource)

    def fetch(self, mod: ModReference) -> list[CandidateFile]:
        """List every candidate file for a mod, raising FetchError on failure."""
        if isinstance(mod, ModrinthMod):
            return self.modrinth.fetch(mod)
        if isinstance(mod, GitHubRepo):
            return self.github.fetch(mod)
        if isinstance(mod, CurseForgeProject):
            return self.curseforge.fetch(mod)
        raise TypeError(f"Unsupported mod reference: {mod!r}")

    def details(self, mod: ModReference) -> ModDetails:
        """Look up display metadata for a mod, raising FetchError on failure."""
        if isinstance(mod, ModrinthMod):
            return self.modrinth.details(mod)
        if isinstance(mod, GitHubRepo):
            return self.github.details(mod)
        if isinstance(mod, CurseForgeProject):
            return self.curseforge.details(mod)
        raise TypeError(f"Unsupported mod reference: {mod!r}")

    def display_name(self, mod: ModReference) -> str:
        return self.details(mod).name
