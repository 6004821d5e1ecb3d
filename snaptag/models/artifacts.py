"""
Lifecycle management for local model weight files.

One ModelArtifactManager owns one model family's directory: it downloads
missing files with progress reporting, supports cancellation, imports files
the user fetched by hand, and deletes everything on request. Whether a model
is usable is decided by looking at the directory every time; there is no
manifest and no cached flag.

Example:
    >>> manager = ModelArtifactManager(VISION_MODEL, Path("~/.snaptag/models").expanduser())
    >>> manager.add_progress_listener(lambda p: print(f"{p:.0%}"))
    >>> await manager.start_download()
"""

import asyncio
import logging
import os
import shutil
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

import httpx

from ..core.errors import DownloadFailedError, InsufficientStorageError
from ..core.types import (
    ArtifactFile,
    ArtifactRole,
    ArtifactState,
    DownloadJob,
    DownloadState,
    ImportResult,
    ModelArtifactSpec,
)
from ..shared.media_utils import format_bytes

logger = logging.getLogger(__name__)

PARTIAL_SUFFIX = ".part"
IMPORT_SUFFIX = ".import"

DEFAULT_STORAGE_MARGIN = 500_000_000

# Bytes read from the response per progress update
DEFAULT_CHUNK_SIZE = 1024 * 1024

ProgressListener = Callable[[float], None]
ClientFactory = Callable[[], httpx.AsyncClient]


class ModelArtifactManager:
    """Downloads, imports and deletes the files of one local model.

    Attributes:
        spec: The model family this manager owns
        directory: Managed directory holding the model files
        last_error: Reason of the most recent failed download, if any
    """

    USER_AGENT = "Mozilla/5.0 (X11; Linux x86_64) snaptag"

    def __init__(
        self,
        spec: ModelArtifactSpec,
        models_root: Path,
        client_factory: Optional[ClientFactory] = None,
        storage_margin_bytes: int = DEFAULT_STORAGE_MARGIN,
        timeout: float = 60.0,
        disk_usage: Callable[[Path], Any] = shutil.disk_usage,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        self.spec = spec
        self.directory = Path(models_root) / spec.directory
        self.storage_margin_bytes = storage_margin_bytes
        self.timeout = timeout
        self._client_factory = client_factory or self._default_client
        self._disk_usage = disk_usage
        self.chunk_size = chunk_size

        self.last_error: Optional[str] = None
        self._outcome: Optional[ArtifactState] = None
        self._progress = 0.0
        self._jobs: List[DownloadJob] = []
        self._current_job: Optional[DownloadJob] = None
        self._task: Optional[asyncio.Task] = None
        self._cancel_requested = False
        self._listeners: List[ProgressListener] = []
        self._queues: List[asyncio.Queue] = []

    def _default_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            follow_redirects=True,
            timeout=httpx.Timeout(self.timeout),
            headers={"User-Agent": self.USER_AGENT},
        )

    # ------------------------------------------------------------------
    # On-disk state
    # ------------------------------------------------------------------

    @property
    def paths(self) -> Dict[ArtifactRole, Path]:
        """Absolute destination path for each required file."""
        return {f.role: self.directory / f.file_name for f in self.spec.files}

    def has_file(self, role: ArtifactRole) -> bool:
        path = self.paths.get(role)
        return path is not None and path.is_file()

    def missing_files(self) -> List[ArtifactFile]:
        return [f for f in self.spec.files if not (self.directory / f.file_name).is_file()]

    def is_complete(self) -> bool:
        """True iff every required file exists; checked on disk every call."""
        return not self.missing_files()

    @property
    def is_downloading(self) -> bool:
        return (
            self._task is not None and not self._task.done() and not self._cancel_requested
        )

    @property
    def state(self) -> ArtifactState:
        if self.is_downloading:
            return ArtifactState.DOWNLOADING
        if self.is_complete():
            return ArtifactState.DOWNLOADED
        if self._outcome in (ArtifactState.FAILED, ArtifactState.CANCELLED):
            return self._outcome
        return ArtifactState.NOT_DOWNLOADED

    @property
    def progress(self) -> float:
        """Overall download progress in [0, 1]."""
        return self._progress

    @property
    def current_file(self) -> Optional[str]:
        """Name of the file being transferred, if any."""
        if self._current_job is None or not self.is_downloading:
            return None
        return self._current_job.destination_path.name

    @property
    def jobs(self) -> List[DownloadJob]:
        """Transfers of the current or most recent download."""
        return list(self._jobs)

    # ------------------------------------------------------------------
    # Sizes and storage
    # ------------------------------------------------------------------

    def downloaded_size_bytes(self) -> int:
        """Bytes occupied by the files already present."""
        total = 0
        for path in self.paths.values():
            if path.is_file():
                total += path.stat().st_size
        return total

    def remaining_bytes(self) -> int:
        """Expected bytes still to download."""
        return sum(f.expected_size_bytes for f in self.missing_files())

    def required_bytes(self) -> int:
        """Free space needed before a download may start."""
        return self.remaining_bytes() + self.storage_margin_bytes

    def display_size(self) -> str:
        return format_bytes(self.spec.total_size_bytes)

    def display_required_size(self) -> str:
        return format_bytes(self.required_bytes())

    def available_bytes(self) -> int:
        """Free space on the volume that holds (or will hold) the directory."""
        path = self.directory
        while not path.exists() and path != path.parent:
            path = path.parent
        return int(self._disk_usage(path).free)

    def has_enough_storage(self) -> bool:
        """Return False (never raise) when the volume is too full."""
        try:
            return self.available_bytes() >= self.required_bytes()
        except OSError as e:
            logger.warning(f"Could not determine free space for {self.directory}: {e}")
            return False

    # ------------------------------------------------------------------
    # Progress reporting
    # ------------------------------------------------------------------

    def add_progress_listener(self, listener: ProgressListener) -> None:
        self._listeners.append(listener)

    def remove_progress_listener(self, listener: ProgressListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def progress_updates(self) -> AsyncIterator[float]:
        """Yield progress values until the current download ends."""
        queue: asyncio.Queue = asyncio.Queue()
        self._queues.append(queue)
        try:
            while True:
                value = await queue.get()
                if value is None:
                    break
                yield value
        finally:
            self._queues.remove(queue)

    def _notify(self, value: float) -> None:
        for listener in list(self._listeners):
            try:
                listener(value)
            except Exception as e:
                logger.warning(f"Progress listener failed: {e}")
        for queue in self._queues:
            queue.put_nowait(value)

    def _close_updates(self) -> None:
        for queue in self._queues:
            queue.put_nowait(None)

    def _set_progress(self, value: float) -> None:
        """Advance progress; never moves backwards during a download."""
        value = min(1.0, max(self._progress, value))
        if value != self._progress:
            self._progress = value
            self._notify(value)

    # ------------------------------------------------------------------
    # Download
    # ------------------------------------------------------------------

    def _plan_jobs(self, files: List[ArtifactFile]) -> List[DownloadJob]:
        """Create one job per file; progress segments are proportional to size."""
        total = sum(f.expected_size_bytes for f in files)
        jobs = []
        offset = 0.0
        for artifact_file in files:
            scale = artifact_file.expected_size_bytes / total if total > 0 else 1.0 / len(files)
            jobs.append(
                DownloadJob(
                    id=f"{self.spec.key}:{artifact_file.role.value}",
                    role=artifact_file.role,
                    source_url=artifact_file.download_url,
                    destination_path=self.directory / artifact_file.file_name,
                    expected_size_bytes=artifact_file.expected_size_bytes,
                    progress_offset=offset,
                    progress_scale=scale,
                )
            )
            offset += scale
        return jobs

    async def start_download(self) -> None:
        """Download every missing file.

        Does nothing when a download is already running or the model is
        complete. Returns normally if the download is cancelled with
        cancel_download().

        Raises:
            InsufficientStorageError: Not enough free space; nothing was transferred
            DownloadFailedError: A transfer failed; its partial file is removed
        """
        if self.is_downloading:
            logger.info(f"{self.spec.name} download already in progress")
            return
        if self.is_complete():
            logger.info(f"{self.spec.name} is already downloaded")
            return

        required = self.required_bytes()
        available = self.available_bytes()
        if available < required:
            self.last_error = "insufficient storage"
            raise InsufficientStorageError(required, available)

        try:
            self.directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise DownloadFailedError(f"cannot create {self.directory}: {e}") from e

        previous = self._task
        self._jobs = self._plan_jobs(self.missing_files())
        self._progress = 0.0
        self._outcome = None
        self.last_error = None
        self._cancel_requested = False
        # Assigned before the first await so a second call sees it
        self._task = asyncio.create_task(self._run_jobs(self._jobs, previous))
        self._notify(0.0)
        logger.info(
            f"Downloading {self.spec.name} ({format_bytes(self.remaining_bytes())}) "
            f"to {self.directory}"
        )

        task = self._task
        try:
            await task
        except asyncio.CancelledError:
            if task is not self._task or (self._cancel_requested and task.cancelled()):
                logger.info(f"{self.spec.name} download cancelled")
                return
            self._outcome = ArtifactState.CANCELLED
            raise
        except DownloadFailedError as e:
            if task is self._task:
                self._outcome = ArtifactState.FAILED
                self.last_error = e.reason
            logger.error(f"{self.spec.name} download failed: {e.reason}")
            raise
        finally:
            if task is self._task:
                self._current_job = None
                self._close_updates()

        self._outcome = ArtifactState.DOWNLOADED
        logger.info(f"{self.spec.name} downloaded")

    async def _run_jobs(self, jobs: List[DownloadJob], previous: Optional[asyncio.Task]) -> None:
        if previous is not None and not previous.done():
            # A cancelled transfer may still be unwinding
            await asyncio.gather(previous, return_exceptions=True)

        async with self._client_factory() as client:
            for job in jobs:
                self._current_job = job
                await self._download_file(client, job)
        self._set_progress(1.0)

    async def _download_file(self, client: httpx.AsyncClient, job: DownloadJob) -> None:
        destination = job.destination_path
        part_path = destination.with_name(destination.name + PARTIAL_SUFFIX)
        job.state = DownloadState.IN_PROGRESS
        job.bytes_written = 0
        logger.info(f"Downloading {destination.name} from {job.source_url}")

        try:
            async with client.stream("GET", job.source_url) as response:
                if response.status_code != 200:
                    raise DownloadFailedError(f"HTTP {response.status_code} for {destination.name}")

                content_length = int(response.headers.get("content-length") or 0)
                total = content_length if content_length > 0 else job.expected_size_bytes

                with open(part_path, "wb") as f:
                    async for chunk in response.aiter_bytes(self.chunk_size):
                        await asyncio.to_thread(f.write, chunk)
                        job.bytes_written += len(chunk)
                        self._set_progress(job.overall_progress(total))

            # Remove-then-move so a valid file is never overwritten in place
            if destination.exists():
                destination.unlink()
            os.replace(part_path, destination)
        except asyncio.CancelledError:
            job.state = DownloadState.CANCELLED
            self._remove_quietly(part_path)
            raise
        except DownloadFailedError as e:
            job.state = DownloadState.FAILED
            job.failure_reason = e.reason
            self._remove_quietly(part_path)
            raise
        except (httpx.HTTPError, OSError, ValueError) as e:
            reason = str(e) or type(e).__name__
            job.state = DownloadState.FAILED
            job.failure_reason = reason
            self._remove_quietly(part_path)
            raise DownloadFailedError(reason) from e

        job.state = DownloadState.COMPLETED
        self._set_progress(job.progress_offset + job.progress_scale)
        logger.info(f"Downloaded {destination.name} ({format_bytes(job.bytes_written)})")

    def cancel_download(self) -> None:
        """Cancel the running download, discard partial files, reset progress to 0.

        No-op when nothing is downloading.
        """
        if not self.is_downloading:
            logger.debug(f"No {self.spec.name} download to cancel")
            return

        self._cancel_requested = True
        self._outcome = ArtifactState.CANCELLED
        self._task.cancel()
        for job in self._jobs:
            if job.state in (DownloadState.PENDING, DownloadState.IN_PROGRESS):
                job.state = DownloadState.CANCELLED
        self._remove_partials()
        self._current_job = None
        self._progress = 0.0
        self._notify(0.0)
        logger.info(f"{self.spec.name} download cancelled")

    # ------------------------------------------------------------------
    # Import and delete
    # ------------------------------------------------------------------

    def classify(self, file_name: str) -> Optional[ArtifactRole]:
        """Guess which required file a user-supplied file is, from its name."""
        name = file_name.lower()
        roles = {f.role for f in self.spec.files}

        if "mmproj" in name:
            return ArtifactRole.VISION_PROJECTOR if ArtifactRole.VISION_PROJECTOR in roles else None
        if ArtifactRole.LANGUAGE_MODEL not in roles:
            return None
        if "ggml-model" in name or "q4" in name or "q8" in name:
            return ArtifactRole.LANGUAGE_MODEL
        if not self.spec.is_composite and name.endswith(".gguf"):
            return ArtifactRole.LANGUAGE_MODEL
        return None

    def import_model(self, source: Path) -> ImportResult:
        """Copy a pre-downloaded file into the managed directory.

        Raises:
            DownloadFailedError: File missing, unrecognized, or copy failed
        """
        source = Path(source)
        if not source.is_file():
            raise DownloadFailedError(f"file not found: {source}")
        if self.is_downloading:
            raise DownloadFailedError("a download is in progress")

        role = self.classify(source.name)
        if role is None:
            if self.spec.is_composite:
                hint = "file name must contain 'ggml-model' (language model) or 'mmproj' (vision projector)"
            else:
                hint = "expected a .gguf language model file"
            raise DownloadFailedError(f"unrecognized model file '{source.name}': {hint}")

        destination = self.paths[role]
        temp_path = destination.with_name(destination.name + IMPORT_SUFFIX)
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(source, temp_path)
            if destination.exists():
                destination.unlink()
            os.replace(temp_path, destination)
        except OSError as e:
            self._remove_quietly(temp_path)
            raise DownloadFailedError(f"import failed: {e}") from e

        missing = [f.role for f in self.missing_files()]
        self._outcome = None
        result = ImportResult(role=role, is_complete=not missing, missing=missing)
        logger.info(f"{self.spec.name}: {result.message}")
        return result

    def delete_model(self) -> None:
        """Remove all files of this model, including leftovers. Idempotent."""
        if self.is_downloading:
            self.cancel_download()

        for path in self.paths.values():
            self._remove_quietly(path)
        self._remove_partials()

        self._outcome = None
        self._progress = 0.0
        self.last_error = None
        logger.info(f"{self.spec.name} deleted")

    def _remove_partials(self) -> None:
        if not self.directory.is_dir():
            return
        for suffix in (PARTIAL_SUFFIX, IMPORT_SUFFIX):
            for path in self.directory.glob(f"*{suffix}"):
                self._remove_quietly(path)

    @staticmethod
    def _remove_quietly(path: Path) -> None:
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not remove {path}: {e}")
