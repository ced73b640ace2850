"""Moves a finished artifact from the provider's ephemeral URL to permanent storage.

Steps: claim (``downloading``) -> streamed download with chunk progress and
integrity checks -> ``storing`` -> upsert upload -> public URL -> size
verification -> ``completed``. The claim is a compare-and-set, so a
lifecycle is archived at most once even if completion is detected twice.
"""

from __future__ import annotations

import mimetypes
import posixpath
from typing import Optional
from urllib.parse import urlparse

from gentask.core.config import OrchestratorConfig
from gentask.core.exceptions import ArchiveError, IntegrityError, OrchestratorError
from gentask.core.interfaces.http_client import HttpClientPort, ProgressCallback
from gentask.core.interfaces.object_storage import ObjectStoragePort
from gentask.core.interfaces.retry import RetryPort
from gentask.core.managers.failure_classifier import is_transient
from gentask.core.managers.task_registry import CancellationToken, TaskCancelled
from gentask.core.managers.task_state import TaskStateWriter
from gentask.core.models.artifact import DownloadedArtifact
from gentask.core.models.task import REMOTE_PHASE_STATUSES, Task, TaskPatch, TaskStatus
from gentask.core.settings import logger

DOWNLOADING_PROGRESS = 96
STORING_PROGRESS = 98
THUMBNAIL_MAX_BYTES = 20 * 1024 * 1024

_EXTENSIONS = {
    "video/mp4": ".mp4",
    "video/webm": ".webm",
    "video/quicktime": ".mov",
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/webp": ".webp",
}
_RESUMABLE_STATUSES = REMOTE_PHASE_STATUSES | {TaskStatus.downloading, TaskStatus.storing}


def _extension(content_type: Optional[str], url: str, default: str) -> str:
    mime = (content_type or "").split(";")[0].strip().lower()
    if mime in _EXTENSIONS:
        return _EXTENSIONS[mime]
    suffix = posixpath.splitext(urlparse(url).path)[1].lower()
    if suffix and len(suffix) <= 6:
        return suffix
    guessed = mimetypes.guess_extension(mime) if mime else None
    return guessed or default


def _content_type(content_type: Optional[str], extension: str) -> str:
    mime = (content_type or "").split(";")[0].strip().lower()
    if mime and mime not in ("application/octet-stream", "binary/octet-stream"):
        return mime
    return mimetypes.types_map.get(extension, "application/octet-stream")


class Archiver:
    def __init__(
        self,
        http_client: HttpClientPort,
        storage: ObjectStoragePort,
        writer: TaskStateWriter,
        config: OrchestratorConfig,
        retry: RetryPort,
    ) -> None:
        self._http = http_client
        self._storage = storage
        self._writer = writer
        self.config = config
        self._retry = retry

    def storage_path(self, task: Task, extension: str, suffix: str = "") -> str:
        return f"{self.config.storage_prefix}/{task.owner_id}/{task.id}{suffix}{extension}"

    async def archive(
        self,
        task: Task,
        source_url: str,
        thumbnail_url: Optional[str],
        token: CancellationToken,
        resume: bool = False,
    ) -> Optional[Task]:
        """Archive the artifact at ``source_url`` and complete the task.

        Returns the completed task, or None when another path already
        claimed the archival. Raises ArchiveError / IntegrityError on
        failure and TaskCancelled once cancellation is observed.
        """
        claim = await self._writer.update(
            task.id,
            TaskPatch(
                status=TaskStatus.downloading,
                progress=DOWNLOADING_PROGRESS,
                remote_result_url=source_url,
            ),
            expected_status=_RESUMABLE_STATUSES if resume else REMOTE_PHASE_STATUSES,
        )
        if claim is None:
            logger.info(f"[task:archive] already claimed task_id={task.id}")
            return None
        task = claim.task
        logger.info(f"[task:archive] downloading task_id={task.id} source={source_url}")

        artifact = await self._download(task, source_url)
        self._verify_download(task, artifact)
        token.raise_if_cancelled()

        await self._writer.update(
            task.id,
            TaskPatch(status=TaskStatus.storing, progress=STORING_PROGRESS),
            expected_status={TaskStatus.downloading, TaskStatus.storing},
        )
        extension = _extension(artifact.content_type, source_url, ".mp4")
        path = self.storage_path(task, extension)
        await self._upload(task, path, artifact.data, _content_type(artifact.content_type, extension))

        public_url = self._storage.get_public_url(path)
        if not public_url or public_url == source_url:
            raise IntegrityError(
                "Storage returned no permanent URL distinct from the provider URL",
                diagnostic=f"public_url={public_url}",
                task_id=task.id,
            )
        if self.config.verify_archive_size:
            stored_size = await self._storage.object_size(path)
            if stored_size is not None and stored_size != artifact.size:
                raise IntegrityError(
                    f"Stored object size {stored_size} does not match downloaded size {artifact.size}",
                    diagnostic=f"path={path}",
                    task_id=task.id,
                )

        final_thumbnail = await self._archive_thumbnail(task, thumbnail_url)
        token.raise_if_cancelled()

        fields = dict(
            status=TaskStatus.completed,
            progress=100,
            result_url=public_url,
            storage_path=path,
            file_size=artifact.size,
        )
        if final_thumbnail:
            fields["thumbnail_url"] = final_thumbnail
        done = await self._writer.update(
            task.id, TaskPatch(**fields), expected_status={TaskStatus.storing}
        )
        if done is None:
            return None
        logger.info(
            f"[task:archive] completed task_id={task.id} path={path} bytes={artifact.size}"
        )
        return done.task

    def _download_progress(self, task: Task) -> ProgressCallback:
        """Map received bytes onto the progress band below ``storing``."""
        reported = DOWNLOADING_PROGRESS

        async def report(received: int, declared: Optional[int]) -> None:
            nonlocal reported
            if not declared:
                return
            band = STORING_PROGRESS - DOWNLOADING_PROGRESS
            progress = DOWNLOADING_PROGRESS + band * min(received, declared) // declared
            progress = min(progress, STORING_PROGRESS - 1)
            if progress <= reported:
                return
            reported = progress
            await self._writer.update(
                task.id,
                TaskPatch(progress=progress),
                expected_status={TaskStatus.downloading},
            )

        return report

    async def _download(self, task: Task, url: str) -> DownloadedArtifact:
        try:
            return await self._retry.execute(
                self._http.download,
                url,
                timeout=self.config.download_timeout,
                max_bytes=self.config.max_artifact_bytes,
                on_progress=self._download_progress(task),
                attempts=self.config.archive_max_attempts,
                wait_initial=self.config.archive_retry_base_wait,
                wait_max=self.config.archive_retry_max_wait,
                exception_types=(Exception,),
                retry_if=is_transient,
            )
        except (TaskCancelled, IntegrityError):
            raise
        except Exception as exc:
            message = exc.message if isinstance(exc, OrchestratorError) else str(exc)
            raise ArchiveError(
                f"Download of the generated artifact failed: {message}",
                diagnostic=f"url={url}",
                task_id=task.id,
            ) from exc

    def _verify_download(self, task: Task, artifact: DownloadedArtifact) -> None:
        if artifact.size == 0:
            raise IntegrityError("Downloaded artifact is empty", task_id=task.id)
        if artifact.declared_length is not None and artifact.declared_length != artifact.size:
            raise IntegrityError(
                f"Downloaded {artifact.size} bytes but the server declared {artifact.declared_length}",
                diagnostic="truncated download",
                task_id=task.id,
            )

    async def _upload(self, task: Task, path: str, data: bytes, content_type: str) -> None:
        try:
            await self._retry.execute(
                self._storage.upload,
                path,
                data,
                content_type,
                attempts=self.config.archive_max_attempts,
                wait_initial=self.config.archive_retry_base_wait,
                wait_max=self.config.archive_retry_max_wait,
                exception_types=(Exception,),
                retry_if=_is_transient_upload,
            )
        except ArchiveError:
            raise
        except Exception as exc:
            message = exc.message if isinstance(exc, OrchestratorError) else str(exc)
            raise ArchiveError(
                f"Upload to storage failed: {message}",
                diagnostic=f"path={path}",
                task_id=task.id,
            ) from exc

    async def _archive_thumbnail(self, task: Task, thumbnail_url: Optional[str]) -> Optional[str]:
        """Best effort: on any failure keep the provider's thumbnail URL."""
        if not thumbnail_url or not self.config.archive_thumbnails:
            return thumbnail_url
        try:
            image = await self._http.download(
                thumbnail_url,
                timeout=self.config.download_timeout,
                max_bytes=THUMBNAIL_MAX_BYTES,
            )
            if image.size == 0:
                return thumbnail_url
            extension = _extension(image.content_type, thumbnail_url, ".jpg")
            path = self.storage_path(task, extension, suffix="_thumb")
            await self._storage.upload(path, image.data, _content_type(image.content_type, extension))
            return self._storage.get_public_url(path)
        except Exception as exc:
            logger.warning(
                f"[task:archive] thumbnail archival failed task_id={task.id} url={thumbnail_url} err={exc}"
            )
            return thumbnail_url


def _is_transient_upload(exc: BaseException) -> bool:
    status = getattr(exc, "status", None)
    if isinstance(exc, ArchiveError):
        return status is None or status == 429 or status >= 500
    return is_transient(exc)
