"""
Task domain model.

Tasks belong to a project and are delegated to exactly one member. The
assignee is not checked against the project's member set here; the creation
form only offers current members.
"""
import logging
from typing import Callable, List, Optional

from pydantic import ValidationError
from pymongo import DESCENDING
from pymongo.errors import OperationFailure, PyMongoError

import database
from live import Subscription
from schemas import Task

logger = logging.getLogger(__name__)

STATUS_CYCLE = {
    "not_started": "in_progress",
    "in_progress": "completed",
    "completed": "not_started",
}

NEWEST_FIRST = [("createdAt", DESCENDING)]


def _log_query_error(what: str, error: Exception):
    logger.error("Error fetching %s: %s", what, error)
    if isinstance(error, OperationFailure) and "index" in str(error).lower():
        logger.error("This query needs an index; run database.ensure_indexes() and retry once it is built")


def create_task(
    project_id: str,
    creator_id: str,
    name: str,
    description: str,
    due_date: str,
    priority: str,
    assignee_id: Optional[str],
) -> Optional[dict]:
    if not assignee_id:
        logger.error("No assignedTo value selected")
        return None
    try:
        if database.get_document("projects", project_id) is None:
            logger.error("Project not found: %s", project_id)
            return None
        task = Task(
            name=name,
            description=description,
            dueDate=due_date,
            priority=priority,
            assignedTo=assignee_id,
            projectId=project_id,
            createdBy=creator_id,
            createdAt=database.now_iso(),
            status="assigned",
        )
    except ValidationError as e:
        logger.error("Invalid task for project %s: %s", project_id, e)
        return None
    except PyMongoError as e:
        logger.error("Error verifying project %s: %s", project_id, e)
        return None

    try:
        created = database.create_document("tasks", task.model_dump(exclude={"id"}))
    except PyMongoError as e:
        logger.error("Error creating task: %s", e)
        return None
    logger.info("Task created with ID: %s", created["id"])
    return created


def _project_tasks_query(project_id: str):
    return lambda: database.get_documents("tasks", {"projectId": project_id}, sort=NEWEST_FIRST)


def _assignee_tasks_query(user_id: str):
    return lambda: database.get_documents("tasks", {"assignedTo": user_id}, sort=NEWEST_FIRST)


def list_tasks_for_project(project_id: str) -> List[dict]:
    try:
        return _project_tasks_query(project_id)()
    except PyMongoError as e:
        _log_query_error(f"tasks of project {project_id}", e)
        return []


def list_tasks_for_assignee(user_id: str) -> List[dict]:
    try:
        return _assignee_tasks_query(user_id)()
    except PyMongoError as e:
        _log_query_error(f"tasks assigned to {user_id}", e)
        return []


def watch_project_tasks(project_id: str, on_snapshot: Callable[[list], None]) -> Subscription:
    return Subscription(
        "tasks",
        _project_tasks_query(project_id),
        on_snapshot,
        on_error=lambda e: _log_query_error(f"tasks of project {project_id}", e),
    ).start()


def watch_assignee_tasks(user_id: str, on_snapshot: Callable[[list], None]) -> Subscription:
    return Subscription(
        "tasks",
        _assignee_tasks_query(user_id),
        on_snapshot,
        on_error=lambda e: _log_query_error(f"tasks assigned to {user_id}", e),
    ).start()


def next_status(status: str) -> str:
    return STATUS_CYCLE.get(status, "not_started")


def update_task_status(task_id: str, status: str) -> bool:
    # Last write wins; there is no concurrency check.
    try:
        return database.update_document("tasks", task_id, {"status": status})
    except PyMongoError as e:
        logger.error("Error updating task status: %s", e)
        return False


def advance_task_status(task_id: str) -> Optional[str]:
    try:
        task = database.get_document("tasks", task_id)
    except PyMongoError as e:
        logger.error("Error fetching task %s: %s", task_id, e)
        return None
    if task is None:
        return None
    status = next_status(task.get("status", ""))
    if not update_task_status(task_id, status):
        return None
    return status


def delete_task(task_id: str) -> bool:
    try:
        return database.delete_document("tasks", task_id)
    except PyMongoError as e:
        logger.error("Error deleting task: %s", e)
        return False


def filter_tasks(tasks: List[dict], priority: Optional[str] = None, assigned_to: Optional[str] = None, status: Optional[str] = None) -> List[dict]:
    """Empty or ``None`` filters match everything; ``status="all"`` too."""
    result = []
    for task in tasks:
        if priority and task.get("priority") != priority:
            continue
        if assigned_to and task.get("assignedTo") != assigned_to:
            continue
        if status and status != "all" and task.get("status") != status:
            continue
        result.append(task)
    return result


def attach_projects(tasks: List[dict]) -> List[dict]:
    cache = {}
    for task in tasks:
        pid = task.get("projectId")
        if pid not in cache:
            try:
                project = database.get_document("projects", pid)
            except PyMongoError as e:
                logger.error("Error fetching project for task %s: %s", task.get("id"), e)
                task["project"] = {"id": "error", "name": "Error Loading Project", "course": ""}
                continue
            if project is None:
                cache[pid] = {"id": "deleted", "name": "Deleted Project", "course": ""}
            else:
                cache[pid] = {"id": project["id"], "name": project.get("name", ""), "course": project.get("course", "")}
        task["project"] = dict(cache[pid])
    return tasks
