import asyncio
import logging
import os
import secrets
from contextlib import asynccontextmanager
from typing import Callable, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request, Response, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel
from pymongo.errors import PyMongoError
from starlette.concurrency import run_in_threadpool

import database
import identity
import invites
import live
import meetings
import milestones
import progress
import projects
import tasks
from identity import IdentityError, SessionContext
from schemas import TaskPriority, TaskStatus

logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"), format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

SESSION_COOKIE = "session"
APP_BASE_URL = os.getenv("APP_BASE_URL", "http://localhost:3000")
SESSION_COOKIE_SECURE = os.getenv("SESSION_COOKIE_SECURE", "0") == "1"
LIVE_CHANGE_STREAMS = os.getenv("LIVE_CHANGE_STREAMS", "1") == "1"
# shared secret of the trusted gateway that verifies federated (OAuth) sign-ins
FEDERATED_AUTH_KEY = os.getenv("FEDERATED_AUTH_KEY")


@asynccontextmanager
async def lifespan(app: FastAPI):
    watcher = None
    if database.db is not None:
        database.ensure_indexes()
        if LIVE_CHANGE_STREAMS:
            watcher = live.ChangeStreamWatcher(database.collection, database.LIVE_COLLECTIONS).start()
    else:
        logger.warning("DATABASE_URL not set; running without a database")
    yield
    if watcher is not None:
        watcher.stop()


app = FastAPI(title="StudyHub Project Management API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# --------- Session dependencies ---------

def get_session(request: Request) -> SessionContext:
    return SessionContext.open(request.cookies.get(SESSION_COOKIE))


def require_session(session: SessionContext = Depends(get_session)) -> SessionContext:
    if session.user is None:
        raise HTTPException(status_code=401, detail="Not signed in")
    return session


def set_session_cookie(response: Response, token: str):
    response.set_cookie(SESSION_COOKIE, token, httponly=True, samesite="lax", secure=SESSION_COOKIE_SECURE)


# --------- Schemas (light, for request bodies) ---------
class SignupIn(BaseModel):
    email: str
    password: str
    confirmPassword: str
    firstName: str
    lastName: str


class LoginIn(BaseModel):
    email: str
    password: str


class FederatedIn(BaseModel):
    email: str
    displayName: Optional[str] = None


class ProfileIn(BaseModel):
    username: str
    university: str
    phoneNumber: str


class ProjectIn(BaseModel):
    name: str
    course: str
    dueDate: str
    description: str = ""


class TaskIn(BaseModel):
    name: str
    description: str = ""
    dueDate: str
    priority: TaskPriority
    assignedTo: Optional[str] = None


class StatusIn(BaseModel):
    status: TaskStatus


class MilestoneIn(BaseModel):
    title: str
    description: str = ""
    dueDate: str


class ToggleIn(BaseModel):
    completed: bool = False


class MeetingIn(BaseModel):
    title: str
    description: str = ""
    date: str
    time: str
    location: str = ""


# --------- Root & Test ---------
@app.get("/")
def read_root():
    return {"message": "StudyHub Backend Running"}


@app.get("/test")
def store_health():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_name": None,
        "collections": [],
        "indexes": {},
        "live": {},
    }
    if database.db is None:
        response["database"] = "⚠️ DATABASE_URL not set"
        return response
    response["database_name"] = database.db.name
    try:
        response["collections"] = database.db.list_collection_names()
        response["indexes"] = database.index_status()
        response["database"] = "✅ Connected & Working"
    except PyMongoError as e:
        response["database"] = f"⚠️ Connected but Error: {str(e)[:80]}"
    response["live"] = {
        name: "change stream" if live.feed.is_streamed(name) else "in-process"
        for name in database.LIVE_COLLECTIONS
    }
    return response


@app.get("/schema")
def get_schema_overview():
    return {"collections": database.COLLECTIONS}


# --------- Auth & profile ---------
def _after_auth(request: Request, response: Response, token: str) -> dict:
    set_session_cookie(response, token)
    session = SessionContext.open(token)
    outcome = invites.resume_pending_invite(request, response, session.uid)
    if outcome is not None and outcome.redirect:
        redirect = outcome.redirect
    else:
        redirect = identity.onboarding_redirect(session, identity.DASHBOARD_PATH) or identity.DASHBOARD_PATH
    return {
        **session.to_dict(),
        "invite": outcome.to_dict() if outcome else None,
        "redirect": redirect,
    }


@app.post("/api/auth/signup", status_code=201)
def signup(body: SignupIn, request: Request, response: Response):
    try:
        _, token = identity.sign_up(body.email, body.password, body.confirmPassword, body.firstName, body.lastName)
    except IdentityError as e:
        raise HTTPException(e.status_code, e.message)
    return _after_auth(request, response, token)


@app.post("/api/auth/login")
def login(body: LoginIn, request: Request, response: Response):
    token = identity.sign_in(body.email, body.password)
    if not token:
        raise HTTPException(401, "Invalid email or password")
    return _after_auth(request, response, token)


@app.post("/api/auth/federated")
def federated_login(body: FederatedIn, request: Request, response: Response, x_identity_provider_key: Optional[str] = Header(None)):
    """Sign in a principal the trusted identity gateway has already verified.

    The gateway authenticates with the provider (Google, ...) and presents the
    verified email and display name together with ``FEDERATED_AUTH_KEY``.
    """
    if not FEDERATED_AUTH_KEY:
        raise HTTPException(503, "Federated sign-in not configured")
    if not x_identity_provider_key or not secrets.compare_digest(x_identity_provider_key, FEDERATED_AUTH_KEY):
        raise HTTPException(401, "Unverified identity provider")
    token = identity.sign_in_federated(body.email, body.displayName)
    return _after_auth(request, response, token)


@app.post("/api/auth/logout")
def logout(response: Response, session: SessionContext = Depends(get_session)):
    session.close()
    response.delete_cookie(SESSION_COOKIE)
    return {"signedOut": True}


@app.get("/api/auth/session")
def current_session(path: Optional[str] = None, session: SessionContext = Depends(get_session)):
    data = session.to_dict()
    data["redirect"] = identity.onboarding_redirect(session, path or identity.DASHBOARD_PATH)
    return data


@app.get("/api/profile/username/{username}")
def username_available(username: str):
    return {"username": username, "available": identity.is_username_available(username)}


@app.post("/api/profile")
def setup_profile(body: ProfileIn, session: SessionContext = Depends(require_session)):
    try:
        identity.update_profile(session.uid, body.username, body.university, body.phoneNumber)
    except IdentityError as e:
        raise HTTPException(e.status_code, e.message)
    return {"user": identity.get_user(session.uid), "redirect": identity.DASHBOARD_PATH}


# --------- Dashboard ---------
@app.get("/api/dashboard")
def dashboard(session: SessionContext = Depends(require_session)):
    return projects.dashboard_summary(session.uid)


# --------- Projects ---------
def _project_or_404(project_id: str) -> dict:
    pr = projects.get_project(project_id)
    if not pr:
        raise HTTPException(404, "Project not found")
    return pr


@app.get("/api/projects")
def list_projects(session: SessionContext = Depends(require_session)):
    return projects.list_projects_for_member(session.uid)


@app.post("/api/projects", status_code=201)
def create_project(p: ProjectIn, session: SessionContext = Depends(require_session)):
    created = projects.create_project(session.uid, p.name, p.course, p.dueDate, p.description)
    if not created:
        raise HTTPException(503, "Could not create project")
    created["inviteLink"] = projects.invite_link(created["inviteCode"], APP_BASE_URL)
    return created


@app.get("/api/projects/{project_id}")
def get_project(project_id: str):
    pr = _project_or_404(project_id)
    pr["memberDetails"] = projects.list_members(project_id)
    return pr


@app.get("/api/projects/{project_id}/members")
def list_members(project_id: str):
    _project_or_404(project_id)
    return projects.list_members(project_id)


@app.get("/api/projects/{project_id}/progress")
def project_progress(project_id: str):
    _project_or_404(project_id)
    return progress.compute_progress(tasks.list_tasks_for_project(project_id))


# --------- Tasks ---------
@app.get("/api/projects/{project_id}/tasks")
def list_project_tasks(project_id: str, priority: Optional[str] = None, assignedTo: Optional[str] = None, status: Optional[str] = None):
    items = tasks.list_tasks_for_project(project_id)
    return tasks.filter_tasks(items, priority=priority, assigned_to=assignedTo, status=status)


@app.post("/api/projects/{project_id}/tasks", status_code=201)
def create_task(project_id: str, t: TaskIn, session: SessionContext = Depends(require_session)):
    _project_or_404(project_id)
    if not t.assignedTo:
        raise HTTPException(400, "Select a team member")
    created = tasks.create_task(project_id, session.uid, t.name, t.description, t.dueDate, t.priority, t.assignedTo)
    if not created:
        raise HTTPException(503, "Could not create task")
    return created


@app.get("/api/tasks")
def my_tasks(status: Optional[str] = None, session: SessionContext = Depends(require_session)):
    items = tasks.filter_tasks(tasks.list_tasks_for_assignee(session.uid), status=status)
    return tasks.attach_projects(items)


@app.put("/api/tasks/{task_id}/status")
def update_task_status(task_id: str, body: StatusIn, session: SessionContext = Depends(require_session)):
    if not tasks.update_task_status(task_id, body.status):
        raise HTTPException(404, "Task not found")
    return {"id": task_id, "status": body.status}


@app.post("/api/tasks/{task_id}/advance")
def advance_task(task_id: str, session: SessionContext = Depends(require_session)):
    status = tasks.advance_task_status(task_id)
    if status is None:
        raise HTTPException(404, "Task not found")
    return {"id": task_id, "status": status}


@app.delete("/api/tasks/{task_id}")
def delete_task(task_id: str, session: SessionContext = Depends(require_session)):
    if not tasks.delete_task(task_id):
        raise HTTPException(404, "Task not found")
    return {"deleted": True}


# --------- Milestones ---------
@app.get("/api/projects/{project_id}/milestones")
def list_milestones(project_id: str):
    return milestones.list_milestones(project_id)


@app.post("/api/projects/{project_id}/milestones", status_code=201)
def create_milestone(project_id: str, m: MilestoneIn, session: SessionContext = Depends(require_session)):
    created = milestones.create_milestone(project_id, m.title, m.description, m.dueDate)
    if not created:
        raise HTTPException(503, "Could not create milestone")
    return created


@app.post("/api/milestones/{milestone_id}/toggle")
def toggle_milestone(milestone_id: str, body: ToggleIn, session: SessionContext = Depends(require_session)):
    if not milestones.toggle_milestone(milestone_id, body.completed):
        raise HTTPException(404, "Milestone not found")
    return {"deleted": True}


@app.delete("/api/milestones/{milestone_id}")
def delete_milestone(milestone_id: str, session: SessionContext = Depends(require_session)):
    if not milestones.delete_milestone(milestone_id):
        raise HTTPException(404, "Milestone not found")
    return {"deleted": True}


# --------- Meetings ---------
@app.get("/api/projects/{project_id}/meetings")
def list_meetings(project_id: str):
    return meetings.list_meetings(project_id)


@app.post("/api/projects/{project_id}/meetings", status_code=201)
def create_meeting(project_id: str, m: MeetingIn, session: SessionContext = Depends(require_session)):
    created = meetings.create_meeting(project_id, m.title, m.description, m.date, m.time, m.location)
    if not created:
        raise HTTPException(503, "Could not create meeting")
    return created


@app.delete("/api/meetings/{meeting_id}")
def delete_meeting(meeting_id: str, session: SessionContext = Depends(require_session)):
    if not meetings.delete_meeting(meeting_id):
        raise HTTPException(404, "Meeting not found")
    return {"deleted": True}


# --------- Invites ---------
@app.get("/api/invites/{code}")
def resolve_invite(code: str, session: SessionContext = Depends(get_session)):
    outcome = invites.resolve_invite(code, session.uid)
    if outcome.state == invites.InviteState.INVALID:
        raise HTTPException(404, outcome.error)
    return outcome.to_dict()


@app.post("/api/invites/{code}/join")
def join_project(code: str, response: Response, via: str = "signup", session: SessionContext = Depends(get_session)):
    auth_path = "/login" if via == "login" else "/signup"
    outcome = invites.join(code, session.uid, auth_path=auth_path)
    if outcome.state == invites.InviteState.INVALID:
        raise HTTPException(404, outcome.error)
    if outcome.state == invites.InviteState.DEFERRED:
        invites.stash_pending_invite(response, code)
    if outcome.state == invites.InviteState.JOIN_FAILED:
        raise HTTPException(503, outcome.error)
    return outcome.to_dict()


# --------- Live views ---------
async def _stream(websocket: WebSocket, watch: Callable):
    """Push every snapshot produced by ``watch`` until the socket closes or a push fails."""
    await websocket.accept()
    loop = asyncio.get_running_loop()
    queue: asyncio.Queue = asyncio.Queue()
    sub = None

    async def pump():
        while True:
            await websocket.send_json(await queue.get())

    async def drain():
        try:
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            pass

    try:
        sub = await run_in_threadpool(watch, lambda payload: loop.call_soon_threadsafe(queue.put_nowait, payload))
        sender = asyncio.create_task(pump())
        receiver = asyncio.create_task(drain())
        done, pending = await asyncio.wait({sender, receiver}, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        if sender in done:
            logger.error("Live push failed, closing socket: %s", sender.exception())
            try:
                await websocket.close(code=1011)
            except RuntimeError:
                pass
    finally:
        if sub is not None:
            sub.cancel()


@app.websocket("/ws/projects/{project_id}/tasks")
async def stream_project_tasks(websocket: WebSocket, project_id: str):
    await _stream(websocket, lambda push: tasks.watch_project_tasks(project_id, push))


@app.websocket("/ws/projects/{project_id}/progress")
async def stream_project_progress(websocket: WebSocket, project_id: str):
    await _stream(websocket, lambda push: progress.watch_progress(project_id, push))


@app.websocket("/ws/projects/{project_id}/milestones")
async def stream_milestones(websocket: WebSocket, project_id: str):
    await _stream(websocket, lambda push: milestones.watch_milestones(project_id, push))


@app.websocket("/ws/projects/{project_id}/meetings")
async def stream_meetings(websocket: WebSocket, project_id: str):
    await _stream(websocket, lambda push: meetings.watch_meetings(project_id, push))


@app.websocket("/ws/tasks/mine")
async def stream_my_tasks(websocket: WebSocket):
    session = await run_in_threadpool(SessionContext.open, websocket.cookies.get(SESSION_COOKIE))
    if session.user is None:
        await websocket.close(code=4001)
        return
    await _stream(websocket, lambda push: tasks.watch_assignee_tasks(session.uid, push))


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
