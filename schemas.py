"""
Database Schemas for the StudyHub project-management app

Each Pydantic model describes the documents of one MongoDB collection
(User -> "users", Project -> "projects", ...). Field names are camelCase
because they are what the browser client reads.
"""
from typing import List, Optional, Literal
from pydantic import BaseModel, Field, EmailStr

TaskStatus = Literal['assigned', 'not_started', 'in_progress', 'completed']
TaskPriority = Literal['low', 'medium', 'high']
ProjectStatus = Literal['active', 'completed', 'archived']

TASK_STATUSES = ('assigned', 'not_started', 'in_progress', 'completed')
TASK_PRIORITIES = ('low', 'medium', 'high')

# ------------------ Core Collections ------------------

class User(BaseModel):
    id: Optional[str] = Field(None, description="Document id as string")
    email: EmailStr
    firstName: str
    lastName: str
    createdAt: Optional[str] = None
    # filled in during onboarding
    username: Optional[str] = None
    university: Optional[str] = None
    phoneNumber: Optional[str] = None
    profileComplete: bool = False

class Project(BaseModel):
    id: Optional[str] = None
    name: str
    course: str
    dueDate: str
    description: str = ""
    createdBy: str  # user id string
    members: List[str] = []  # user id strings, creator first
    status: ProjectStatus = 'active'
    inviteCode: str
    createdAt: Optional[str] = None

class Task(BaseModel):
    id: Optional[str] = None
    name: str
    description: str = ""
    dueDate: str
    createdAt: Optional[str] = None
    projectId: str
    createdBy: str
    status: TaskStatus = 'assigned'
    priority: TaskPriority = 'medium'
    assignedTo: str

class Milestone(BaseModel):
    id: Optional[str] = None
    title: str
    description: str = ""
    dueDate: str
    completed: bool = False
    projectId: str
    createdAt: Optional[str] = None

class Meeting(BaseModel):
    id: Optional[str] = None
    title: str
    description: str = ""
    date: str
    time: str
    location: str = ""
    projectId: str
    createdAt: Optional[str] = None

class Session(BaseModel):
    token: str
    userId: str
    createdAt: Optional[str] = None
