"""Materializer stage: copy the backend artifact into durable storage.

Any failure here is terminal for the job: a failed or empty download, a
rejected upload, or a failed final write (the uploaded object is then
removed so no orphan is left behind). The job only becomes completed
together with its permanent URL.
"""

import time
from typing import Optional
from urllib.parse import urlparse
from uuid import UUID

import httpx
import structlog

from mediagen.models.job_metadata import CompletionInfo
from mediagen.services.exceptions import MaterializationError, StorageError
from mediagen.workers.stage_context import MaterializePayload, StageContext, fail_job

logger = structlog.get_logger(__name__)

KNOWN_EXTENSIONS = (".png", ".jpg", ".jpeg", ".webp", ".gif", ".mp4")


def choose_content_type(media_kind: str, url: str) -> tuple[str, str]:
    """Pick (extension, content type) for an artifact.

    Images keep the URL's extension (default .png). Videos are .mp4 when the
    URL says so and .webp/video/webm otherwise.
    """
    path = urlparse(url).path.lower()
    url_extension = next((ext for ext in KNOWN_EXTENSIONS if path.endswith(ext)), None)

    if media_kind == "image":
        extension = url_extension or ".png"
        return extension, f"image/{extension[1:]}"
    if media_kind == "video":
        if url_extension == ".mp4":
            return ".mp4", "video/mp4"
        return ".webp", "video/webm"
    return url_extension or ".bin", "application/octet-stream"


def build_storage_key(owner_id: UUID, media_kind: str, job_id: UUID, extension: str) -> str:
    """Key layout: <owner>/<kind>s/<epoch ms>-<job id prefix><ext>."""
    timestamp = int(time.time() * 1000)
    return f"{owner_id}/{media_kind}s/{timestamp}-{str(job_id)[:8]}{extension}"


async def download_artifact(
    url: str, timeout: float, transport: Optional[httpx.AsyncBaseTransport] = None
) -> bytes:
    """Fetch the artifact bytes.

    Raises:
        MaterializationError: Transport failure, non-2xx response or empty body
    """
    try:
        async with httpx.AsyncClient(
            timeout=timeout, transport=transport, follow_redirects=True
        ) as client:
            response = await client.get(url, headers={"Cache-Control": "no-cache"})
    except httpx.TimeoutException as e:
        raise MaterializationError(f"Download timeout after {timeout}s: {e}") from e
    except httpx.HTTPError as e:
        raise MaterializationError(f"Download network error: {e}") from e

    if not response.is_success:
        raise MaterializationError(
            f"Download failed ({response.status_code}): {response.reason_phrase}"
        )
    if not response.content:
        raise MaterializationError("Downloaded file is empty")
    return response.content


async def materialize_job(ctx: StageContext, payload: MaterializePayload) -> None:
    """Run one materialize invocation. Never raises for job-level failures."""
    log = logger.bind(job_id=str(payload.job_id), run_id=payload.run_id)

    async with await ctx.uow_factory() as uow:
        job = await uow.jobs.get_by_id(payload.job_id)
        if job is None:
            log.warning("job.materialize.job_missing")
            return
        if job.is_terminal:
            log.info("job.materialize.skipped_terminal", status=job.status.value)
            return
        owner_id = job.owner_id
        media_kind = ctx.modes[job.mode].media_kind

    log.info("job.materialize.started", output_url=payload.output_url)

    try:
        data = await download_artifact(
            payload.output_url, ctx.settings.download_timeout_seconds, ctx.http_transport
        )
    except MaterializationError as e:
        log.error("job.materialize.download_failed", error=str(e))
        await fail_job(ctx, payload.job_id, e, run_id=payload.run_id)
        return

    extension, content_type = choose_content_type(media_kind, payload.output_url)
    storage_key = build_storage_key(owner_id, media_kind, payload.job_id, extension)

    try:
        public_url = await ctx.storage.upload(storage_key, data, content_type)
    except Exception as e:
        log.error(
            "job.materialize.upload_failed",
            storage_key=storage_key,
            error=str(e),
            error_type=type(e).__name__,
        )
        error = e if isinstance(e, StorageError) else StorageError(f"Storage upload error: {e}")
        await fail_job(ctx, payload.job_id, error, run_id=payload.run_id)
        return

    info = CompletionInfo(
        result_url=public_url,
        storage_key=storage_key,
        original_url=payload.output_url,
        file_size=len(data),
        content_type=content_type,
    )

    try:
        async with await ctx.uow_factory() as uow:
            job = await uow.jobs.get_for_update(payload.job_id)
            completed = job is not None and await uow.jobs.mark_completed(job, info)
    except Exception as e:
        log.error("job.materialize.finalize_failed", error=str(e), error_type=type(e).__name__)
        await _delete_orphan(ctx, storage_key)
        await fail_job(
            ctx,
            payload.job_id,
            MaterializationError(f"Failed to record completed result: {e}"),
            run_id=payload.run_id,
        )
        return

    if not completed:
        # Job went terminal while this invocation was uploading
        await _delete_orphan(ctx, storage_key)
        return

    log.info(
        "job.materialize.succeeded",
        storage_key=storage_key,
        file_size=len(data),
        content_type=content_type,
    )


async def _delete_orphan(ctx: StageContext, storage_key: str) -> None:
    try:
        await ctx.storage.delete(storage_key)
        logger.info("job.materialize.orphan_deleted", storage_key=storage_key)
    except Exception as e:
        logger.error("job.materialize.orphan_delete_failed", storage_key=storage_key, error=str(e))
