"""Upgrade orchestration: fetch, filter, pick, download and place every mod of a profile."""

import os
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Sequence

from rich.progress import Progress

from . import resolver
from .downloader import DownloadError, DownloadErrorKind, Downloader
from .log_utils import logger
from .mods import ModReference
from .profile import Profile
from .resolver import Chooser, Strategy, filter_candidates
from .sources import CandidateFile, FetchError, FetchErrorKind, SourceRegistry

DEFAULT_MAX_WORKERS = 4


class OutputDirectoryError(Exception):
    """Raised when the output directory cannot be created or written."""

    pass


@dataclass
class ModOutcome:
    mod: ModReference

    ok = False
    status = ""


@dataclass
class Resolved(ModOutcome):
    candidate: CandidateFile
    path: Path

    ok = True
    status = "resolved"


@dataclass
class NoCompatibleFile(ModOutcome):
    candidates_seen: int = 0

    status = "no_compatible_file"


@dataclass
class AmbiguousAndUnresolved(ModOutcome):
    candidates: int = 0

    status = "ambiguous"


@dataclass
class SourceFetchFailed(ModOutcome):
    kind: FetchErrorKind = FetchErrorKind.NETWORK
    message: str = ""

    status = "fetch_failed"


@dataclass
class DownloadFailed(ModOutcome):
    kind: DownloadErrorKind = DownloadErrorKind.NETWORK
    message: str = ""

    status = "download_failed"


@dataclass
class UpgradeReport:
    """One outcome per mod, in the profile's mod order."""

    profile_name: str
    outcomes: list[ModOutcome] = field(default_factory=list)

    @property
    def resolved(self) -> list[Resolved]:
        return [o for o in self.outcomes if isinstance(o, Resolved)]

    @property
    def failed(self) -> list[ModOutcome]:
        return [o for o in self.outcomes if not o.ok]

    @property
    def ok(self) -> bool:
        return not self.failed

    def __len__(self) -> int:
        return len(self.outcomes)


def prepare_output_dir(output_dir: Path) -> Path:
    """Create the output directory if needed and check it is writable."""
    output_dir = Path(output_dir).expanduser()
    try:
        output_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise OutputDirectoryError(f"Cannot create output directory {output_dir}: {e}")
    if not output_dir.is_dir():
        raise OutputDirectoryError(f"Output path {output_dir} is not a directory")
    if not os.access(output_dir, os.W_OK | os.X_OK):
        raise OutputDirectoryError(f"Output directory {output_dir} is not writable")
    return output_dir


class UpgradeService:
    """
    Resolves and downloads every mod of a profile.

    Mods are processed concurrently on a bounded thread pool. Each mod ends
    in exactly one outcome and no failure stops the other mods; the only
    fatal error is an unusable output directory, detected before any mod is
    processed.
    """

    def __init__(
        self,
        sources: SourceRegistry | None = None,
        downloader: Downloader | None = None,
        strategy: Strategy = Strategy.AUTO,
        chooser: Chooser | None = None,
        patch_check: bool = True,
        max_workers: int = DEFAULT_MAX_WORKERS,
        progress: Progress | None = None,
    ):
        self.sources = sources or SourceRegistry()
        self.downloader = downloader or Downloader()
        self.strategy = strategy
        self.chooser = chooser
        self.patch_check = patch_check
        self.max_workers = max(1, max_workers)
        self.progress = progress
        self._chooser_lock = threading.Lock()

    def upgrade(
        self, profile: Profile, installed: Mapping[str, str] | None = None
    ) -> UpgradeReport:
        """
        Run the upgrade pipeline for every mod of the profile.

        Args:
            profile: The profile to upgrade. It is only read.
            installed: Filenames placed by earlier runs, keyed by mod key.
                A mod's previous file is removed once a differently named
                replacement is in place. Defaults to profile.installed.

        Returns the report with outcomes in the profile's mod order.
        """
        output_dir = prepare_output_dir(profile.output_dir)
        installed = dict(profile.installed if installed is None else installed)
        mods = list(profile.mods)
        outcomes: list[ModOutcome | None] = [None] * len(mods)

        logger.debug(
            f"Upgrading profile '{profile.name}' ({len(mods)} mods, "
            f"{profile.game_version}/{profile.mod_loader.value}, strategy={self.strategy.value})"
        )

        if mods:
            executor = ThreadPoolExecutor(max_workers=self.max_workers)
            futures = {
                executor.submit(self._process, mod, profile, output_dir): index
                for index, mod in enumerate(mods)
            }
            try:
                for future in as_completed(futures):
                    outcomes[futures[future]] = future.result()
            except BaseException:
                # Pending mods are dropped; running downloads clean up their own temp files
                executor.shutdown(wait=False, cancel_futures=True)
                raise
            executor.shutdown(wait=True)

        report = UpgradeReport(profile_name=profile.name, outcomes=list(outcomes))
        self._remove_stale_files(report, installed, output_dir)
        return report

    def _process(self, mod: ModReference, profile: Profile, output_dir: Path) -> ModOutcome:
        """Run one mod through fetch, filter, pick, download and place."""
        logger.debug(f"{mod.key}: fetching")
        try:
            candidates = self.sources.fetch(mod)
        except FetchError as e:
            logger.warning(f"{mod.key}: {e}")
            return SourceFetchFailed(mod=mod, kind=e.kind, message=str(e))

        logger.debug(f"{mod.key}: filtering {len(candidates)} candidates")
        compatible = filter_candidates(
            candidates, profile.game_version, profile.mod_loader, self.patch_check
        )
        if not compatible:
            logger.warning(f"{mod.key}: no compatible file")
            return NoCompatibleFile(mod=mod, candidates_seen=len(candidates))

        try:
            chosen = self._pick(compatible)
        except resolver.AmbiguousAndUnresolved as e:
            logger.warning(f"{mod.key}: {e}")
            return AmbiguousAndUnresolved(mod=mod, candidates=len(compatible))
        except resolver.NoCompatibleFile:
            return NoCompatibleFile(mod=mod, candidates_seen=len(candidates))

        logger.debug(f"{mod.key}: downloading {chosen.label}")
        task_id = None
        if self.progress is not None:
            task_id = self.progress.add_task(
                "download", filename=chosen.label[:40], total=chosen.size
            )
        try:
            path = self.downloader.download(chosen, output_dir, self.progress, task_id)
        except DownloadError as e:
            logger.warning(f"{mod.key}: {e}")
            return DownloadFailed(mod=mod, kind=e.kind, message=str(e))

        return Resolved(mod=mod, candidate=chosen, path=path)

    def _pick(self, compatible: Sequence[CandidateFile]) -> CandidateFile:
        if self.strategy == Strategy.INTERACTIVE and len(compatible) > 1:
            # One prompt at a time
            with self._chooser_lock:
                return resolver.resolve(compatible, self.strategy, self.chooser)
        return resolver.resolve(compatible, self.strategy, self.chooser)

    def _remove_stale_files(
        self, report: UpgradeReport, installed: Mapping[str, str], output_dir: Path
    ) -> None:
        """Delete files an earlier run placed for mods that now got a different file."""
        placed = {o.path.name for o in report.resolved}
        resolved_keys = {o.mod.key for o in report.resolved}
        # Files still tracked for mods that were not re-placed stay untouched
        protected = placed | {
            filename for key, filename in installed.items() if key not in resolved_keys
        }

        for outcome in report.resolved:
            previous = installed.get(outcome.mod.key)
            if not previous or previous in protected or Path(previous).name != previous:
                continue
            stale = output_dir / previous
            if stale.is_file():
                logger.info(f"Removing superseded {stale.name}")
                try:
                    stale.unlink()
                except OSError as e:
                    logger.warning(f"Could not remove {stale}: {e}")
