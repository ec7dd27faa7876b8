"""Download manager with temp-file staging and atomic placement."""

import errno
import os
import shutil
import tempfile
from enum import Enum
from pathlib import Path

import requests
from rich.progress import (
    BarColumn,
    DownloadColumn,
    Progress,
    TaskID,
    TextColumn,
    TimeRemainingColumn,
    TransferSpeedColumn,
)

from .api import REQUEST_TIMEOUT, USER_AGENT
from .log_utils import logger
from .sources import CandidateFile

TEMP_PREFIX = ".downloading_"
CHUNK_SIZE = 8192


class DownloadErrorKind(str, Enum):
    NETWORK = "network"
    HTTP_STATUS = "http_status"
    INCOMPLETE = "incomplete"
    FILESYSTEM = "filesystem"
    INVALID_NAME = "invalid_name"


class DownloadError(Exception):
    """Raised when a download fails."""

    def __init__(self, kind: DownloadErrorKind, message: str):
        self.kind = kind
        super().__init__(message)


def safe_filename(label: str) -> str:
    """
    Validate a file label as a single path component.

    Raises DownloadError for empty names, "." and "..", separators and
    null bytes.
    """
    name = label.strip()
    if (
        not name
        or name in (".", "..")
        or "/" in name
        or "\\" in name
        or "\x00" in name
        or os.path.isabs(name)
    ):
        raise DownloadError(DownloadErrorKind.INVALID_NAME, f"Unsafe file name: {label!r}")
    return name


def place_file(temp_path: Path, final_path: Path) -> Path:
    """
    Move a completed download to its final path.

    os.replace is atomic when both paths are on the same filesystem, which
    is the case for temp files staged inside the output directory. If the
    staging directory lives on another volume the file is copied, its size
    verified and the temp file removed; readers may then briefly observe a
    partially copied file at the final path.
    """
    try:
        os.replace(temp_path, final_path)
        return final_path
    except OSError as e:
        if e.errno != errno.EXDEV:
            raise

    logger.warning(
        f"Atomic rename unavailable for {final_path.name} (cross-device); copying instead"
    )
    shutil.copyfile(temp_path, final_path)
    if final_path.stat().st_size != temp_path.stat().st_size:
        final_path.unlink()
        raise DownloadError(
            DownloadErrorKind.FILESYSTEM, f"Copy of {final_path.name} did not verify"
        )
    temp_path.unlink()
    return final_path


class Downloader:
    """Streams candidate files to disk with progress tracking."""

    def __init__(
        self,
        session: requests.Session | None = None,
        temp_dir: Path | None = None,
    ):
        self.session = session or requests.Session()
        self.session.headers.update({"User-Agent": USER_AGENT})
        self.temp_dir = Path(temp_dir) if temp_dir else None

    def download(
        self,
        candidate: CandidateFile,
        target_dir: Path,
        progress: Progress | None = None,
        task_id: TaskID | None = None,
    ) -> Path:
        """
        Download a candidate file into target_dir under its label.

        The file is streamed to a hidden temporary file first and only moved
        to its final name once the byte count matches Content-Length, or the
        candidate's declared size when the body is unsized or content-encoded.
        On any failure, interruption included, the temporary file is removed
        and nothing appears at the final path.

        Returns path to the placed file.
        """
        filename = safe_filename(candidate.label)
        final_path = target_dir / filename
        staging_dir = self.temp_dir or target_dir

        try:
            fd, temp_name = tempfile.mkstemp(dir=staging_dir, prefix=TEMP_PREFIX, suffix=".part")
        except OSError as e:
            raise DownloadError(
                DownloadErrorKind.FILESYSTEM, f"Cannot create temporary file for {filename}: {e}"
            )
        temp_path = Path(temp_name)

        try:
            with os.fdopen(fd, "wb") as f:
                bytes_downloaded, expected = self._stream(candidate, f, progress, task_id)
                f.flush()
                os.fsync(f.fileno())

            if expected is not None and bytes_downloaded != expected:
                raise DownloadError(
                    DownloadErrorKind.INCOMPLETE,
                    f"Incomplete download of {filename}: got {bytes_downloaded} of {expected} bytes",
                )

            placed = place_file(temp_path, final_path)
            logger.info(f"Placed {placed}")
            return placed

        except DownloadError:
            raise
        except OSError as e:
            raise DownloadError(DownloadErrorKind.FILESYSTEM, f"Failed to write {filename}: {e}")
        finally:
            # Clean up temp file on error or interruption
            if temp_path.exists():
                temp_path.unlink()

    def _stream(
        self,
        candidate: CandidateFile,
        f,
        progress: Progress | None,
        task_id: TaskID | None,
    ) -> tuple[int, int | None]:
        """Write the response body to f. Returns (bytes written, expected size)."""
        try:
            response = self.session.get(candidate.url, stream=True, timeout=REQUEST_TIMEOUT)
        except requests.RequestException as e:
            raise DownloadError(DownloadErrorKind.NETWORK, f"Failed to download {candidate.label}: {e}")

        with response:
            try:
                response.raise_for_status()
            except requests.HTTPError as e:
                raise DownloadError(DownloadErrorKind.HTTP_STATUS, f"Failed to download {candidate.label}: {e}")

            expected = None
            content_length = response.headers.get("content-length")
            # iter_content yields decoded bytes; an encoded body's length is not comparable
            encoding = (response.headers.get("content-encoding") or "identity").strip().lower()
            if encoding == "identity" and content_length and content_length.isdigit():
                expected = int(content_length)
            elif candidate.size:
                expected = candidate.size

            if progress and task_id is not None:
                progress.update(task_id, total=expected)

            bytes_downloaded = 0
            try:
                for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                    if chunk:
                        f.write(chunk)
                        bytes_downloaded += len(chunk)
                        if progress and task_id is not None:
                            progress.update(task_id, advance=len(chunk))
            except requests.RequestException as e:
                raise DownloadError(
                    DownloadErrorKind.INCOMPLETE,
                    f"Transfer of {candidate.label} interrupted after {bytes_downloaded} bytes: {e}",
                )

        return bytes_downloaded, expected


def create_download_progress() -> Progress:
    """Create a progress bar for downloads."""
    return Progress(
        TextColumn("[bold blue]{task.fields[filename]}", justify="right"),
        BarColumn(bar_width=30),
        "[progress.percentage]{task.percentage:>3.0f}%",
        DownloadColumn(),
        TransferSpeedColumn(),
        TimeRemainingColumn(),
    )
