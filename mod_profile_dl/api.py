"""HTTP clients for Modrinth, GitHub, CurseForge and the Mojang version manifest."""

import os
import threading
import time
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any

import requests

from . import __version__
from .log_utils import logger

MODRINTH_BASE_URL = "https://api.modrinth.com/v2"
GITHUB_BASE_URL = "https://api.github.com"
CURSEFORGE_BASE_URL = "https://api.curseforge.com/v1"
MOJANG_VERSION_MANIFEST_URL = "https://launchermeta.mojang.com/mc/game/version_manifest_v2.json"

USER_AGENT = f"mod-profile-dl/{__version__}"
REQUEST_TIMEOUT = 30
DEFAULT_RETRY_AFTER = 60
GITHUB_PAGE_SIZE = 100
CURSEFORGE_PAGE_SIZE = 50
# CurseForge rejects index + pageSize above this
CURSEFORGE_MAX_RESULTS = 10000


class APIError(Exception):
    """Base exception for platform API errors."""

    pass


class NotFoundError(APIError):
    """Raised when the requested project, repository or file does not exist."""

    pass


class RateLimitedError(APIError):
    """Raised when rate limited by the API."""

    def __init__(self, retry_after: int = DEFAULT_RETRY_AFTER):
        self.retry_after = retry_after
        super().__init__(f"Rate limited. Retry after {retry_after} seconds.")


class NetworkError(APIError):
    """Raised when the request could not be completed."""

    pass


class MalformedResponseError(APIError):
    """Raised when the response body is not what the API documents."""

    pass


def parse_retry_after(value: str | None, default: int = DEFAULT_RETRY_AFTER) -> int:
    """
    Seconds to wait according to a Retry-After header.

    The header is either a number of seconds or an HTTP date. Anything
    unparseable gives the default.
    """
    if not value:
        return default
    value = value.strip()
    if value.isdigit():
        return int(value)
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return default
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max(int((when - datetime.now(timezone.utc)).total_seconds()), 0)


class _Client:
    """Shared session handling, throttling and error mapping."""

    base_url = ""
    min_request_interval = 0.2

    def __init__(self) -> None:
        self.session = requests.Session()
        self.session.headers.update({"User-Agent": USER_AGENT})
        self._last_request_time = 0.0
        self._rate_lock = threading.Lock()

    def _rate_limit_wait(self) -> None:
        """Ensure we don't exceed rate limits."""
        with self._rate_lock:
            elapsed = time.time() - self._last_request_time
            if elapsed < self.min_request_interval:
                time.sleep(self.min_request_interval - elapsed)
            self._last_request_time = time.time()

    def _handle_response(self, response: requests.Response) -> Any:
        """Handle API response and raise appropriate errors."""
        if response.status_code == 429:
            retry_after = parse_retry_after(response.headers.get("Retry-After"))
            raise RateLimitedError(retry_after)
        if response.status_code == 404:
            raise NotFoundError(f"Resource not found: {response.url}")
        try:
            response.raise_for_status()
        except requests.HTTPError as e:
            raise NetworkError(str(e))
        try:
            return response.json()
        except ValueError as e:
            raise MalformedResponseError(f"Invalid JSON from {response.url}: {e}")

    def _get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        self._rate_limit_wait()
        url = path if path.startswith("http") else f"{self.base_url}{path}"
        logger.debug(f"GET {url}")
        try:
            response = self.session.get(url, params=params, timeout=REQUEST_TIMEOUT)
        except requests.RequestException as e:
            raise NetworkError(f"Request to {url} failed: {e}")
        return self._handle_response(response)


class ModrinthAPI(_Client):
    """Client for the Modrinth v2 REST API."""

    base_url = MODRINTH_BASE_URL
    # Modrinth allows 300 requests per minute
    min_request_interval = 0.2

    def get_project(self, mod_id: str) -> dict[str, Any]:
        """Get project metadata by ID or slug."""
        data = self._get(f"/project/{mod_id}")
        if not isinstance(data, dict):
            raise MalformedResponseError(f"Unexpected project response: {data!r}")
        return data

    def get_versions(self, mod_id: str) -> list[dict[str, Any]]:
        """
        Get every version of a project.

        Each version carries game_versions, loaders, date_published and a
        files list whose entries have url, filename, size and primary.
        """
        data = self._get(f"/project/{mod_id}/version")
        if not isinstance(data, list):
            raise MalformedResponseError(f"Unexpected version list: {data!r}")
        return data


class GitHubAPI(_Client):
    """Client for the GitHub REST API (releases only)."""

    base_url = GITHUB_BASE_URL
    min_request_interval = 0.5

    def __init__(self, token: str | None = None):
        super().__init__()
        self.session.headers.update({"Accept": "application/vnd.github+json"})
        token = token or os.environ.get("GITHUB_TOKEN")
        if token:
            self.session.headers.update({"Authorization": f"Bearer {token}"})

    def _handle_response(self, response: requests.Response) -> Any:
        # GitHub reports an exhausted quota as 403 with a zeroed remaining header
        if (
            response.status_code == 403
            and response.headers.get("X-RateLimit-Remaining") == "0"
        ):
            reset = response.headers.get("X-RateLimit-Reset", "")
            if reset.isdigit():
                retry_after = max(int(int(reset) - time.time()), 0)
            else:
                retry_after = parse_retry_after(response.headers.get("Retry-After"))
            raise RateLimitedError(retry_after)
        return super()._handle_response(response)

    def get_repo(self, owner: str, name: str) -> dict[str, Any]:
        """Get repository metadata."""
        data = self._get(f"/repos/{owner}/{name}")
        if not isinstance(data, dict):
            raise MalformedResponseError(f"Unexpected repository response: {data!r}")
        return data

    def get_releases(self, owner: str, name: str) -> list[dict[str, Any]]:
        """Get every release of the repository with its assets, across all pages."""
        releases: list[dict[str, Any]] = []
        page = 1
        while True:
            data = self._get(
                f"/repos/{owner}/{name}/releases",
                params={"per_page": GITHUB_PAGE_SIZE, "page": page},
            )
            if not isinstance(data, list):
                raise MalformedResponseError(f"Unexpected release list: {data!r}")
            releases.extend(data)
            if len(data) < GITHUB_PAGE_SIZE:
                return releases
            page += 1


class CurseForgeAPI(_Client):
    """Client for the CurseForge v1 REST API."""

    base_url = CURSEFORGE_BASE_URL
    min_request_interval = 0.5

    def __init__(self, api_key: str | None = None):
        super().__init__()
        api_key = api_key or os.environ.get("CURSEFORGE_API_KEY")
        if api_key:
            self.session.headers.update({"x-api-key": api_key})

    def get_mod(self, project_id: int) -> dict[str, Any]:
        """Get mod metadata."""
        data = self._get(f"/mods/{project_id}")
        if not isinstance(data, dict) or not isinstance(data.get("data"), dict):
            raise MalformedResponseError(f"Unexpected mod response: {data!r}")
        return data["data"]

    def get_files(self, project_id: int) -> list[dict[str, Any]]:
        """
        Get every file of a mod, following the index/pageSize pagination.

        CurseForge lists game versions and loader names together in each
        file's gameVersions array (e.g. ["1.20.1", "Forge"]).
        """
        files: list[dict[str, Any]] = []
        index = 0
        while True:
            data = self._get(
                f"/mods/{project_id}/files",
                params={"pageSize": CURSEFORGE_PAGE_SIZE, "index": index},
            )
            if not isinstance(data, dict) or not isinstance(data.get("data"), list):
                raise MalformedResponseError(f"Unexpected file list: {data!r}")
            page = data["data"]
            files.extend(page)

            total = (data.get("pagination") or {}).get("totalCount")
            index += len(page)
            if len(page) < CURSEFORGE_PAGE_SIZE or (isinstance(total, int) and index >= total):
                return files
            if index + CURSEFORGE_PAGE_SIZE > CURSEFORGE_MAX_RESULTS:
                logger.warning(
                    f"CurseForge mod {project_id} lists more than "
                    f"{CURSEFORGE_MAX_RESULTS} files; only the newest are considered"
                )
                return files


class MojangAPI(_Client):
    """Client for Mojang's launcher version manifest."""

    min_request_interval = 0.0

    def get_game_versions(self) -> list[str]:
        """Get every known game version ID, newest first."""
        data = self._get(MOJANG_VERSION_MANIFEST_URL)
        versions = data.get("versions") if isinstance(data, dict) else None
        if not isinstance(versions, list):
            raise MalformedResponseError("Version manifest has no versions list")
        return [v["id"] for v in versions if isinstance(v, dict) and "id" in v]
