"""Compatibility filtering and disambiguation of candidate files."""

from enum import Enum
from typing import Callable, Sequence

from .mods import ModLoader
from .sources import CandidateFile

# chooser(candidates) -> index into candidates, or None when the user cancels
Chooser = Callable[[Sequence[CandidateFile]], int | None]


class Strategy(str, Enum):
    """How to pick between several compatible files."""

    AUTO = "auto"
    INTERACTIVE = "interactive"


class ResolutionError(Exception):
    """Base exception for resolution failures."""

    pass


class NoCompatibleFile(ResolutionError):
    """Raised when no candidate satisfies the profile's constraints."""

    pass


class AmbiguousAndUnresolved(ResolutionError):
    """Raised when several candidates qualify and none was chosen."""

    pass


def major_minor(version: str) -> str:
    """Return the major.minor prefix of a game version ("1.20.1" -> "1.20")."""
    return ".".join(version.split(".")[:2])


def version_matches(candidate: CandidateFile, target_version: str, patch_check: bool) -> bool:
    if patch_check:
        return target_version in candidate.game_versions
    target = major_minor(target_version)
    return any(major_minor(v) == target for v in candidate.game_versions)


def loader_matches(candidate: CandidateFile, target_loader: ModLoader) -> bool:
    return not candidate.loaders or target_loader in candidate.loaders


def filter_candidates(
    candidates: Sequence[CandidateFile],
    target_version: str,
    target_loader: ModLoader,
    patch_check: bool = True,
) -> list[CandidateFile]:
    """
    Keep the candidates installable on the target version and loader.

    With patch_check the target version must be declared exactly; without
    it any declared version sharing the target's major.minor matches. A
    candidate declaring no loaders matches every loader.

    Returns the matches newest first. Ties keep their input order.
    """
    matches = [
        c
        for c in candidates
        if version_matches(c, target_version, patch_check) and loader_matches(c, target_loader)
    ]
    return sorted(matches, key=lambda c: c.published, reverse=True)


def resolve(
    filtered: Sequence[CandidateFile],
    strategy: Strategy,
    chooser: Chooser | None = None,
) -> CandidateFile:
    """
    Pick one file out of the filtered candidates.

    A single candidate is returned as is. With several, AUTO takes the
    first (newest) one and INTERACTIVE asks the chooser for an index.
    """
    if not filtered:
        raise NoCompatibleFile("No compatible file found")

    if len(filtered) == 1:
        return filtered[0]

    if strategy == Strategy.AUTO:
        return filtered[0]

    if chooser is None:
        raise AmbiguousAndUnresolved(
            f"{len(filtered)} compatible files found and no picker is available"
        )

    index = chooser(filtered)
    if index is None:
        raise AmbiguousAndUnresolved("No file was selected")
    if not 0 <= index < len(filtered):
        raise AmbiguousAndUnresolved(f"Selection {index} is out of range")
    return filtered[index]
