import uuid

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    JSON,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base


def new_id() -> str:
    return str(uuid.uuid4())


ROLE_ADMIN = "admin"
ROLE_RESEARCHER = "researcher"

STATUS_PENDING = "pending"
STATUS_IN_PROGRESS = "in_progress"
STATUS_COMPLETED = "completed"
ASSIGNMENT_STATUSES = (STATUS_PENDING, STATUS_IN_PROGRESS, STATUS_COMPLETED)


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String, nullable=False, index=True)
    email = Column(String, nullable=False, unique=True, index=True)
    cpf = Column(String, nullable=True)
    role = Column(String, nullable=False, default=ROLE_RESEARCHER)
    password_hash = Column(String, nullable=False)
    email_confirmed = Column(Boolean, default=False, nullable=False)
    first_access = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # The delete path removes these explicitly, in order, before the user row
    assignments = relationship(
        "SurveyAssignment", back_populates="researcher", passive_deletes=True
    )

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN


class Survey(Base):
    __tablename__ = "surveys"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String, nullable=False, index=True)
    city = Column(String, nullable=False)
    state = Column(String, nullable=False)
    date = Column(Date, nullable=True)
    contractor = Column(String, nullable=True)
    code = Column(String, nullable=False, unique=True, index=True)
    current_manager = Column(JSON, nullable=True)  # {"type": "Prefeito", "name": "..."}
    questions = Column(JSON, nullable=False, default=list)  # ordered, embedded
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), onupdate=func.now(), server_default=func.now()
    )


class SurveyAssignment(Base):
    __tablename__ = "survey_assignments"
    __table_args__ = (
        UniqueConstraint("researcher_id", "survey_id", name="uq_assignment_pair"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    # No foreign key: deleting a survey leaves the assignment orphaned until purged
    survey_id = Column(String(36), nullable=False, index=True)
    researcher_id = Column(
        String(36), ForeignKey("users.id"), nullable=False, index=True
    )
    status = Column(String, nullable=False, default=STATUS_PENDING)
    assigned_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    completed_at = Column(DateTime(timezone=True), nullable=True)

    researcher = relationship("User", back_populates="assignments")

    def to_record(self) -> dict:
        """Row as published on the change feed."""
        return {
            "id": self.id,
            "survey_id": self.survey_id,
            "researcher_id": self.researcher_id,
            "status": self.status,
            "assigned_at": self.assigned_at.isoformat() if self.assigned_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


class Answer(Base):
    __tablename__ = "answers"

    id = Column(String(36), primary_key=True, default=new_id)
    survey_id = Column(String(36), nullable=False, index=True)
    question_id = Column(String(36), nullable=False)
    researcher_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    answer = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class AuthSession(Base):
    __tablename__ = "auth_sessions"

    token_hash = Column(String(64), primary_key=True)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    expires_at = Column(DateTime(timezone=True), nullable=False)

    user = relationship("User", lazy="joined")


class EmailToken(Base):
    __tablename__ = "email_tokens"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    purpose = Column(String, nullable=False)  # 'confirm_email' | 'reset_password'
    token_hash = Column(String(64), nullable=False, unique=True, index=True)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    used_at = Column(DateTime(timezone=True), nullable=True)
