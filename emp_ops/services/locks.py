"""Per-upload mutual exclusion.

Submission, reconciliation, filtering and maintenance all rewrite row state
of an upload. Only one of them may hold a given upload at a time; a second
caller fails fast instead of queueing behind a run that may take minutes.
The registry is process-local (single worker deployment).
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from emp_ops.core.errors import UploadBusyError

logger = logging.getLogger(__name__)


class UploadLockRegistry:
    def __init__(self) -> None:
        self._holders: dict[str, str] = {}

    @asynccontextmanager
    async def hold(self, upload_id: str, operation: str) -> AsyncIterator[None]:
        """
        Hold ``upload_id`` for the duration of the block.

        Raises:
            UploadBusyError: another operation holds the upload
        """
        current = self._holders.get(upload_id)
        if current is not None:
            logger.warning(
                "Upload %s busy: %s requested while %s runs",
                upload_id,
                operation,
                current,
                extra={"event_type": "upload.lock.busy", "upload_id": upload_id},
            )
            raise UploadBusyError(upload_id, current)

        # No await between the check and the claim: atomic on the event loop
        self._holders[upload_id] = operation
        try:
            yield
        finally:
            self._holders.pop(upload_id, None)


upload_locks = UploadLockRegistry()
