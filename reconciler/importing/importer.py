"""
Credential Importer - background bulk import with per-job progress.

import_credentials() returns a job id immediately and runs the import as an
asyncio task. Progress is broadcast on one shared channel and filtered per
job. The latest result of every running job is kept so late subscribers
still see where the job got to. Finished results are kept for the most
recent import_finished_job_retention jobs only.
"""

import asyncio
from collections import OrderedDict
from collections.abc import AsyncIterator, Sequence
from uuid import uuid4

from structlog import get_logger

from reconciler.config import get_settings
from reconciler.events import ChannelSubscription, EventBus, EventChannel
from reconciler.importing.credential_store import CredentialStore
from reconciler.importing.match_detector import ExistingCredentialMatchDetector
from reconciler.models.domain import LoginCredentials
from reconciler.models.results import ImportFinished, ImportInProgress, ImportResult
from reconciler.observability.logging import log_context
from reconciler.observability.metrics import metrics

logger = get_logger(__name__)


class CredentialImporter:
    """
    Async import job tracker.

    Usage:
        importer = CredentialImporter(match_detector, credential_store)
        job_id = await importer.import_credentials(parsed, number_in_source)
        async for result in importer.get_import_status(job_id):
            ...  # ImportInProgress snapshots, then one ImportFinished
    """

    def __init__(
        self,
        match_detector: ExistingCredentialMatchDetector,
        credential_store: CredentialStore,
        finished_job_retention: int | None = None,
    ) -> None:
        self.match_detector = match_detector
        self.credential_store = credential_store
        self.finished_job_retention = (
            get_settings().import_finished_job_retention
            if finished_job_retention is None
            else finished_job_retention
        )

        self._bus = EventBus()
        self._status: EventChannel[ImportResult] = self._bus.channel(
            "import_status", replay=False
        )
        self._latest: dict[str, ImportResult] = {}
        self._finished: OrderedDict[str, ImportFinished] = OrderedDict()
        self._lock = asyncio.Lock()
        self._jobs: set[asyncio.Task[None]] = set()

    async def import_credentials(
        self,
        import_list: Sequence[LoginCredentials],
        original_import_list_size: int,
    ) -> str:
        """
        Schedule an import and return its job id without waiting for it.

        Args:
            import_list: Logins left to import, in order
            original_import_list_size: Size of the source before upstream
                filtering; the difference counts as skipped. A size smaller
                than the list is raised to the list length.

        Returns:
            Job id to pass to get_import_status()
        """
        if original_import_list_size < len(import_list):
            logger.warning(
                "import_original_size_too_small",
                original_import_list_size=original_import_list_size,
                items=len(import_list),
            )
            original_import_list_size = len(import_list)

        async with self._lock:
            job_id = str(uuid4())
            task = asyncio.create_task(
                self._do_import(list(import_list), original_import_list_size, job_id),
                name=f"credential-import-{job_id}",
            )
            self._jobs.add(task)
            task.add_done_callback(self._jobs.discard)

        logger.info(
            "import_job_scheduled",
            job_id=job_id,
            items=len(import_list),
            original_import_list_size=original_import_list_size,
        )
        return job_id

    def get_import_status(self, job_id: str) -> AsyncIterator[ImportResult]:
        """
        Progress of one job.

        Starts with the job's latest result if it already published one and
        ends after ImportFinished.
        """
        latest = self._latest.get(job_id) or self._finished.get(job_id)
        subscription = self._status.subscribe(
            predicate=lambda result: result.job_id == job_id,
            initial=[latest] if latest is not None else (),
        )
        return self._until_finished(subscription)

    @staticmethod
    async def _until_finished(
        subscription: ChannelSubscription[ImportResult],
    ) -> AsyncIterator[ImportResult]:
        try:
            async for result in subscription:
                yield result
                if isinstance(result, ImportFinished):
                    return
        finally:
            subscription.close()

    async def close(self) -> None:
        """Cancel running jobs and end every status stream."""
        jobs = list(self._jobs)
        for job in jobs:
            job.cancel()
        await asyncio.gather(*jobs, return_exceptions=True)
        self._bus.close()

    def _publish(self, result: ImportResult) -> None:
        if isinstance(result, ImportFinished):
            self._latest.pop(result.job_id, None)
            self._finished[result.job_id] = result
            while len(self._finished) > self.finished_job_retention:
                self._finished.popitem(last=False)
        else:
            self._latest[result.job_id] = result
        self._status.publish(result)

    async def _do_import(
        self,
        import_list: list[LoginCredentials],
        original_import_list_size: int,
        job_id: str,
    ) -> None:
        with log_context(job_id=job_id):
            saved_ids: list[int] = []
            skipped = original_import_list_size - len(import_list)

            self._publish(
                ImportInProgress(tuple(saved_ids), skipped, original_import_list_size, job_id)
            )

            for credentials in import_list:
                try:
                    duplicate = await self.match_detector.already_exists(credentials)
                except Exception:
                    logger.exception("import_item_match_failed")
                    duplicate = None

                if duplicate:
                    skipped += 1
                elif duplicate is False:
                    inserted_id = await self._save(credentials)
                    if inserted_id is not None:
                        saved_ids.append(inserted_id)

                self._publish(
                    ImportInProgress(tuple(saved_ids), skipped, original_import_list_size, job_id)
                )

            self._publish(ImportFinished(tuple(saved_ids), skipped, job_id))
            metrics.record_import_finished(saved=len(saved_ids), skipped=skipped)
            logger.info("import_job_finished", saved=len(saved_ids), skipped=skipped)

    async def _save(self, credentials: LoginCredentials) -> int | None:
        # Persistence failures drop the item: it is neither saved nor skipped.
        if not credentials.domain:
            logger.warning("import_item_without_domain")
            return None
        try:
            stored = await self.credential_store.save_credentials(credentials.domain, credentials)
        except Exception:
            logger.exception("import_item_save_failed")
            return None
        return stored.id if stored is not None else None
