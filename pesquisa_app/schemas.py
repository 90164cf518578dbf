import datetime as dt
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


Role = Literal["admin", "researcher"]
AssignmentStatus = Literal["pending", "in_progress", "completed"]
QuestionType = Literal["text", "multiple_choice"]
ManagerType = Literal[
    "Prefeito", "Prefeita", "Governador", "Governadora", "Presidente", "Presidenta"
]


def _check_email(value: str) -> str:
    value = value.strip().lower()
    local, _, domain = value.partition("@")
    if not local or "." not in domain:
        raise ValueError("invalid email address")
    return value


# --- Auth ---
class LoginRequest(BaseModel):
    email: str
    password: str


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: "UserResponse"


class EmailTokenRequest(BaseModel):
    token: str


class PasswordResetRequest(BaseModel):
    email: str


class PasswordResetConfirm(BaseModel):
    token: str
    password: str = Field(..., min_length=6)


class PasswordUpdate(BaseModel):
    password: str = Field(..., min_length=6)


class MessageResponse(BaseModel):
    message: str


# --- Users ---
class UserBase(BaseModel):
    name: str = Field(..., min_length=1)
    email: str
    cpf: Optional[str] = None

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v):
        return _check_email(v)


class UserCreate(UserBase):
    role: Role = "researcher"
    password: str = Field(..., min_length=6)


class UserUpdate(BaseModel):
    # Role is fixed at creation; extra="forbid" turns an attempted change into a 422
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(default=None, min_length=1)
    email: Optional[str] = None
    cpf: Optional[str] = None

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v):
        return _check_email(v) if v is not None else v


class UserResponse(UserBase):
    model_config = ConfigDict(from_attributes=True)

    id: str
    role: Role
    email_confirmed: bool
    first_access: bool
    created_at: Optional[datetime] = None


# --- Surveys ---
class CurrentManager(BaseModel):
    type: ManagerType
    name: str


class QuestionBase(BaseModel):
    text: str = Field(..., min_length=1)
    type: QuestionType = "text"
    options: Optional[List[str]] = None
    required: bool = False

    @model_validator(mode="after")
    def check_options(self):
        if self.type == "multiple_choice" and not self.options:
            raise ValueError("multiple_choice questions need at least one option")
        if self.type == "text":
            self.options = None
        return self


class QuestionCreate(QuestionBase):
    pass


class QuestionUpdate(BaseModel):
    text: Optional[str] = Field(default=None, min_length=1)
    type: Optional[QuestionType] = None
    options: Optional[List[str]] = None
    required: Optional[bool] = None


class Question(QuestionBase):
    id: str


class SurveyBase(BaseModel):
    name: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    date: Optional[dt.date] = None
    contractor: Optional[str] = None
    current_manager: Optional[CurrentManager] = None


class SurveyCreate(SurveyBase):
    questions: List[QuestionCreate] = Field(default_factory=list)


class SurveyUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)
    city: Optional[str] = Field(default=None, min_length=1)
    state: Optional[str] = Field(default=None, min_length=1)
    date: Optional[dt.date] = None
    contractor: Optional[str] = None
    current_manager: Optional[CurrentManager] = None
    questions: Optional[List[QuestionCreate]] = None


class SurveyResponse(SurveyBase):
    model_config = ConfigDict(from_attributes=True)

    id: str
    code: str
    questions: List[Question] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class SurveyDeleteResponse(BaseModel):
    message: str
    survey_id: str


# --- Assignments ---
class AssignmentCreate(BaseModel):
    survey_id: str


class AssignmentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    survey_id: str
    researcher_id: str
    status: AssignmentStatus
    assigned_at: datetime
    completed_at: Optional[datetime] = None


class AssignmentStatusUpdate(BaseModel):
    status: AssignmentStatus


class AnswerItem(BaseModel):
    question_id: str
    answer: str


class AnswerSubmission(BaseModel):
    answers: List[AnswerItem] = Field(..., min_length=1)


class AnswerSubmissionResponse(BaseModel):
    assignment: AssignmentResponse
    answer_count: int


class OrphanPurgeResponse(BaseModel):
    removed: int


# --- Researcher dashboard ---
class AssignmentView(BaseModel):
    """Display shape of one assignment on the researcher dashboard."""

    id: str
    survey_id: str
    status: AssignmentStatus
    assigned_at: datetime
    completed_at: Optional[datetime] = None
    survey_name: str
    city: str
    state: str
    date: Optional[dt.date] = None
    contractor: Optional[str] = None
    code: Optional[str] = None


class DashboardSnapshot(BaseModel):
    researcher_id: str
    status: Literal["idle", "loading", "ready", "failed"]
    assignments: List[AssignmentView] = Field(default_factory=list)
    error: Optional[str] = None
    refreshed_at: Optional[datetime] = None


Token.model_rebuild()
