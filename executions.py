"""
Execution log: append-only record of completed checklists.

Submissions are accepted only while the checklist is due for the submitting
technician, so a loose checklist is executed at most once per technician and a
recurring one at most once per due cycle. The check and the append happen
inside one lock on the executions collection.
"""

import logging
import uuid
from datetime import datetime, tzinfo
from typing import Dict, List, Optional

from pydantic import ValidationError

from database import Database
from due_dates import due_status, is_expired
from schemas import Checklist, Execution

logger = logging.getLogger(__name__)

COLLECTION = "executions"


class ExecutionError(Exception):
    """Submission rejected for a domain reason; the message is user-facing."""


class AlreadyExecutedError(ExecutionError):
    pass


class ChecklistExpiredError(ExecutionError):
    pass


def _parse(records) -> List[Execution]:
    parsed = []
    for record in records:
        try:
            parsed.append(Execution.model_validate(record))
        except ValidationError:
            logger.warning("skipping malformed execution record %r", record.get("id"))
    return parsed


class ExecutionLog:
    def __init__(self, db: Database):
        self.store = db.collection(COLLECTION)

    def read_all(self) -> List[Execution]:
        return _parse(self.store.list())

    def for_user(self, user_id: str) -> List[Execution]:
        return [e for e in self.read_all() if e.user_id == user_id]

    def query(self, checklist_id: Optional[str] = None, user_id: Optional[str] = None) -> List[Execution]:
        return [
            e
            for e in self.read_all()
            if (checklist_id is None or e.checklist_id == checklist_id)
            and (user_id is None or e.user_id == user_id)
        ]

    def append(
        self,
        checklist: Checklist,
        user_id: str,
        now: datetime,
        completed_items: Optional[List[str]] = None,
        photos: Optional[Dict[str, str]] = None,
        tz: Optional[tzinfo] = None,
    ) -> Execution:
        with self.store.transaction() as records:
            if is_expired(checklist, now, tz):
                raise ChecklistExpiredError("This checklist is no longer valid")

            status = due_status(checklist, user_id, now, _parse(records), tz)
            if not status.due:
                logger.info(
                    "duplicate execution rejected",
                    extra={"checklist_id": checklist.id, "user_id": user_id},
                )
                raise AlreadyExecutedError("This checklist has already been executed by this user")

            execution = Execution(
                id=str(uuid.uuid4()),
                checklist_id=checklist.id,
                user_id=user_id,
                completed_at=now,
                completed_items=completed_items or [],
                photos=photos or {},
            )
            records.append(execution.model_dump(by_alias=True, mode="json"))

        logger.info("execution recorded", extra={"checklist_id": checklist.id, "user_id": user_id})
        return execution
