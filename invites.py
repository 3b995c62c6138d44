"""
Invite / join workflow.

An invite code resolves to a project. Visitors without a session get the
code parked in the ``pendingInvite`` cookie and are sent to sign up; the
join is then finished right after signup or login.
"""
import enum
import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Request, Response

import projects

logger = logging.getLogger(__name__)

PENDING_INVITE_COOKIE = "pendingInvite"


class InviteState(str, enum.Enum):
    RESOLVING = "resolving"
    INVALID = "invalid"
    ALREADY_MEMBER = "already_member"
    OFFERING = "offering"
    DEFERRED = "deferred"
    JOINED = "joined"
    JOIN_FAILED = "join_failed"


@dataclass
class InviteOutcome:
    state: InviteState
    project: Optional[dict] = None
    redirect: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        project = None
        if self.project:
            project = {
                "id": self.project["id"],
                "name": self.project.get("name"),
                "course": self.project.get("course"),
                "memberCount": len(self.project.get("members", [])),
            }
        return {"state": self.state.value, "project": project, "redirect": self.redirect, "error": self.error}


def project_path(project_id: str) -> str:
    return f"/dashboard/projects/{project_id}"


def resolve_invite(code: str, uid: Optional[str]) -> InviteOutcome:
    project = projects.get_project_by_invite_code(code)
    if project is None:
        return InviteOutcome(InviteState.INVALID, error="Invalid invite link")
    if uid and uid in project.get("members", []):
        logger.info("User %s is already a member of %s", uid, project["id"])
        return InviteOutcome(InviteState.ALREADY_MEMBER, project, redirect=project_path(project["id"]))
    return InviteOutcome(InviteState.OFFERING, project)


def join(code: str, uid: Optional[str], auth_path: str = "/signup") -> InviteOutcome:
    outcome = resolve_invite(code, uid)
    if outcome.state != InviteState.OFFERING:
        return outcome
    if not uid:
        return InviteOutcome(InviteState.DEFERRED, outcome.project, redirect=auth_path)
    return _add_and_redirect(outcome.project, uid)


def _add_and_redirect(project: dict, uid: str) -> InviteOutcome:
    logger.info("Joining project %s for user %s", project["id"], uid)
    if not projects.add_member(project["id"], uid):
        return InviteOutcome(InviteState.JOIN_FAILED, project, error="Failed to join project")
    return InviteOutcome(InviteState.JOINED, project, redirect=project_path(project["id"]))


# --------- Pending invite (client-local state) ---------

def stash_pending_invite(response: Response, code: str):
    response.set_cookie(PENDING_INVITE_COOKIE, code, httponly=True, samesite="lax")


def consume_pending_invite(request: Request, response: Response) -> Optional[str]:
    code = request.cookies.get(PENDING_INVITE_COOKIE)
    if code:
        response.delete_cookie(PENDING_INVITE_COOKIE)
    return code or None


def resume_pending_invite(request: Request, response: Response, uid: str) -> Optional[InviteOutcome]:
    """Finish a deferred join after authentication, skipping the offer screen."""
    code = consume_pending_invite(request, response)
    if not code:
        return None
    project = projects.get_project_by_invite_code(code)
    if project is None:
        return InviteOutcome(InviteState.INVALID, error="Invalid invite link")
    return _add_and_redirect(project, uid)
