import logging
from typing import Callable, List, Optional

from pymongo.errors import PyMongoError

import database
from live import Subscription
from schemas import Meeting

logger = logging.getLogger(__name__)


def _query(project_id: str):
    return lambda: database.get_documents("meetings", {"projectId": project_id})


def create_meeting(project_id: str, title: str, description: str, date: str, time: str, location: str) -> Optional[dict]:
    meeting = Meeting(
        title=title,
        description=description,
        date=date,
        time=time,
        location=location,
        projectId=project_id,
        createdAt=database.now_iso(),
    )
    try:
        return database.create_document("meetings", meeting.model_dump(exclude={"id"}))
    except PyMongoError as e:
        logger.error("Error creating meeting: %s", e)
        return None


def list_meetings(project_id: str) -> List[dict]:
    try:
        return _query(project_id)()
    except PyMongoError as e:
        logger.error("Error fetching meetings of project %s: %s", project_id, e)
        return []


def watch_meetings(project_id: str, on_snapshot: Callable[[list], None]) -> Subscription:
    return Subscription("meetings", _query(project_id), on_snapshot).start()


def delete_meeting(meeting_id: str) -> bool:
    try:
        return database.delete_document("meetings", meeting_id)
    except PyMongoError as e:
        logger.error("Error deleting meeting: %s", e)
        return False
