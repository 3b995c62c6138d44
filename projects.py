"""
Project domain model: creation with invite codes, lookups and membership.
"""
import logging
import secrets
import string
from datetime import date, datetime, timedelta, timezone
from typing import List, Optional

from pymongo.errors import PyMongoError

import database
from schemas import Project

logger = logging.getLogger(__name__)

INVITE_ALPHABET = string.ascii_letters + string.digits + "_-"
INVITE_CODE_LENGTH = 10
DUE_SOON_DAYS = 7
RECENT_LIMIT = 3


def generate_invite_code(size: int = INVITE_CODE_LENGTH) -> str:
    # Codes are assumed collision-free, so no uniqueness check against the store.
    return "".join(secrets.choice(INVITE_ALPHABET) for _ in range(size))


def invite_link(code: str, base_url: str) -> str:
    return f"{base_url.rstrip('/')}/invite/{code}"


def create_project(creator_id: str, name: str, course: str, due_date: str, description: str = "") -> Optional[dict]:
    project = Project(
        name=name,
        course=course,
        dueDate=due_date,
        description=description,
        createdBy=creator_id,
        members=[creator_id],
        status="active",
        inviteCode=generate_invite_code(),
        createdAt=database.now_iso(),
    )
    data = project.model_dump(exclude={"id"})
    try:
        created = database.create_document("projects", data)
    except PyMongoError as e:
        logger.error("Error creating project %r: %s", name, e)
        return None
    logger.info("Project created with ID: %s", created["id"])
    return created


def get_project(project_id: str) -> Optional[dict]:
    try:
        return database.get_document("projects", project_id)
    except PyMongoError as e:
        logger.error("Error fetching project %s: %s", project_id, e)
        return None


def get_project_by_invite_code(code: str) -> Optional[dict]:
    try:
        matches = database.get_documents("projects", {"inviteCode": code}, limit=1)
    except PyMongoError as e:
        logger.error("Error fetching project with invite code %s: %s", code, e)
        return None
    if not matches:
        logger.info("No project found with invite code: %s", code)
        return None
    return matches[0]


def list_projects_for_member(user_id: str) -> List[dict]:
    """Projects whose member set contains ``user_id``; callers sort and limit."""
    try:
        return database.get_documents("projects", {"members": user_id})
    except PyMongoError as e:
        logger.error("Error fetching projects for %s: %s", user_id, e)
        return []


def add_member(project_id: str, user_id: str) -> bool:
    # $addToSet keeps concurrent joins commutative and idempotent.
    try:
        matched = database.add_to_set("projects", project_id, "members", user_id)
    except PyMongoError as e:
        logger.error("Error adding %s to project %s: %s", user_id, project_id, e)
        return False
    if not matched:
        logger.warning("Project %s not found while adding member %s", project_id, user_id)
    return matched


def list_members(project_id: str) -> List[dict]:
    project = get_project(project_id)
    if not project:
        return []
    ids = [database.oid(uid) for uid in project.get("members", [])]
    ids = [i for i in ids if i is not None]
    try:
        users = database.get_documents("users", {"_id": {"$in": ids}})
    except PyMongoError as e:
        logger.error("Error fetching members of project %s: %s", project_id, e)
        return []
    by_id = {u["id"]: u for u in users}
    members = []
    for uid in project.get("members", []):
        user = by_id.get(uid)
        if user:
            user.pop("passwordHash", None)
            members.append(user)
    return members


def _due(project: dict) -> Optional[date]:
    try:
        return date.fromisoformat(str(project.get("dueDate", ""))[:10])
    except ValueError:
        return None


def dashboard_summary(user_id: str, now: Optional[datetime] = None) -> dict:
    now = now or datetime.now(timezone.utc)
    today = now.date()
    horizon = today + timedelta(days=DUE_SOON_DAYS)
    projects = list_projects_for_member(user_id)

    active = [p for p in projects if p.get("status") == "active"]
    due_soon = [p for p in projects if _due(p) is not None and today <= _due(p) <= horizon]
    recent = sorted(projects, key=lambda p: _due(p) or date.min, reverse=True)[:RECENT_LIMIT]
    return {
        "activeProjects": len(active),
        "dueSoonProjects": len(due_soon),
        "recentProjects": recent,
    }
