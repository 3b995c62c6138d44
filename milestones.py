import logging
from typing import Callable, List, Optional

from pymongo.errors import PyMongoError

import database
from live import Subscription
from schemas import Milestone

logger = logging.getLogger(__name__)


def _query(project_id: str):
    return lambda: database.get_documents("milestones", {"projectId": project_id})


def create_milestone(project_id: str, title: str, description: str, due_date: str) -> Optional[dict]:
    milestone = Milestone(
        title=title,
        description=description,
        dueDate=due_date,
        completed=False,
        projectId=project_id,
        createdAt=database.now_iso(),
    )
    try:
        return database.create_document("milestones", milestone.model_dump(exclude={"id"}))
    except PyMongoError as e:
        logger.error("Error creating milestone: %s", e)
        return None


def list_milestones(project_id: str) -> List[dict]:
    try:
        return _query(project_id)()
    except PyMongoError as e:
        logger.error("Error fetching milestones of project %s: %s", project_id, e)
        return []


def watch_milestones(project_id: str, on_snapshot: Callable[[list], None]) -> Subscription:
    return Subscription("milestones", _query(project_id), on_snapshot).start()


def delete_milestone(milestone_id: str) -> bool:
    try:
        return database.delete_document("milestones", milestone_id)
    except PyMongoError as e:
        logger.error("Error deleting milestone: %s", e)
        return False


def toggle_milestone(milestone_id: str, completed: bool) -> bool:
    # FIXME: the completion checkbox removes the milestone instead of setting
    # completed=not completed; kept until product confirms the intended behaviour.
    try:
        return database.delete_document("milestones", milestone_id)
    except PyMongoError as e:
        logger.error("Error toggling milestone: %s", e)
        return False
