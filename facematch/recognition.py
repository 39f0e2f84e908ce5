"""
Recognition Service

Composes the face store, the matcher and the access log into the
operations exposed by the API:
- Enroll / batch enroll
- Search (passive comparison, always audited)
- Recognize (search + re-tag as a recognition event + trigger hook)
- Clear all data and prune old logs
"""
from datetime import timedelta
from typing import Any, Callable, Iterable, Optional, Tuple
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from facematch.config import DEFAULT_THRESHOLD, LOG_RETENTION_DAYS
from facematch.errors import LogWriteError, StoreError, ValidationError
from facematch.matcher import find_best
from facematch.repository import AccessLogRepository, FaceStoreRepository
from facematch.schemas import BatchItemError, BatchResult, MatchResult

logger = logging.getLogger(__name__)

RecognizedHook = Callable[[MatchResult], Any]


def log_recognition(result: MatchResult) -> None:
    """Default recognition hook: record the intent only."""
    logger.info(f"Face recognized: {result.name} (confidence: {result.confidence:.2f})")


class RecognitionService:
    """
    Service class for enrollment and recognition flows.

    Holds no database state; every call gets the session to work on.
    ``on_recognized`` is called once per recognize whose result matched,
    e.g. to drive a door lock or an LED.
    """

    def __init__(self, on_recognized: Optional[RecognizedHook] = None):
        self.on_recognized = on_recognized or log_recognition

    async def enroll(self, session: AsyncSession, name: Any, vector: Any) -> Tuple[int, bool, str]:
        """
        Enroll a face, or replace the vector of an existing name.

        Returns:
            (face_id, was_update, clean_name)
        """
        face_id, was_update = await FaceStoreRepository.enroll(session, name, vector)
        clean_name = name.strip()

        await AccessLogRepository.record(
            session,
            action="update" if was_update else "enroll",
            face_id=face_id,
            name=clean_name
        )
        return face_id, was_update, clean_name

    async def batch_enroll(self, session: AsyncSession, items: Iterable[Any]) -> BatchResult:
        """
        Enroll each item independently.

        A bad item is reported in ``errors`` and never stops the rest.
        One aggregate batch_enroll entry is logged at the end.
        """
        imported = 0
        errors = []

        for index, item in enumerate(items):
            if not isinstance(item, dict):
                errors.append(BatchItemError(index=index, name="unknown", error="Invalid data format"))
                continue

            raw_name = item.get("name")
            label = raw_name if isinstance(raw_name, str) and raw_name.strip() else "unknown"
            try:
                await FaceStoreRepository.enroll(session, raw_name, item.get("vector"))
            except (ValidationError, StoreError) as e:
                errors.append(BatchItemError(index=index, name=label, error=e.message))
                continue

            imported += 1

        await AccessLogRepository.record(
            session,
            action="batch_enroll",
            name=f"Batch of {imported} faces"
        )

        logger.info(f"Batch enroll: {imported} successful, {len(errors)} failed")
        return BatchResult(imported=imported, failed=len(errors), errors=errors)

    async def search(
        self,
        session: AsyncSession,
        vector: Any,
        threshold: float = DEFAULT_THRESHOLD
    ) -> Tuple[MatchResult, Optional[int]]:
        """
        Find the best match and audit it as a search.

        The search entry is written even when nothing matched, carrying the
        best candidate below the threshold.

        Returns:
            (result, id of the search log entry or None if logging failed)
        """
        result = await find_best(session, vector, threshold)

        entry_id = await AccessLogRepository.record(
            session,
            action="search",
            face_id=result.id,
            name=result.name,
            confidence=result.confidence
        )
        return result, entry_id

    async def recognize(
        self,
        session: AsyncSession,
        vector: Any,
        threshold: float = DEFAULT_THRESHOLD
    ) -> MatchResult:
        """
        Search, and on a match mark the search entry as a recognition
        and invoke the recognition hook. A match with no face
        (empty store, non-positive threshold) is left as a plain search.
        """
        result, entry_id = await self.search(session, vector, threshold)
        # an empty store can "match" at threshold <= 0 with no face behind it
        if not result.match or result.id is None:
            return result

        try:
            if entry_id is not None:
                await AccessLogRepository.retag(session, entry_id)
            else:
                await AccessLogRepository.retag_latest_for_face(session, result.id)
        except LogWriteError as e:
            logger.error(f"Logging error: {e}")

        try:
            self.on_recognized(result)
        except Exception as e:
            logger.error(f"Recognition hook failed for '{result.name}': {e}", exc_info=True)

        return result

    async def clear_all(self, session: AsyncSession) -> Tuple[int, int]:
        """Delete all faces and logs, then audit the wipe."""
        faces_deleted, logs_deleted = await FaceStoreRepository.clear_all(session)

        await AccessLogRepository.record(
            session,
            action="clear_all",
            name=f"Cleared {faces_deleted} faces and {logs_deleted} logs"
        )
        return faces_deleted, logs_deleted

    async def prune_logs(self, session: AsyncSession, days: int = LOG_RETENTION_DAYS) -> int:
        """Delete access log entries older than ``days`` days."""
        deleted = await AccessLogRepository.prune_older_than(session, timedelta(days=days))
        logger.info(f"Cleaned up {deleted} old log entries")
        return deleted
