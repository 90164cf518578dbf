import logging
import re
import time
import unicodedata
import uuid
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from .. import models
from ..errors import AuthorizationError, NotFoundError, ValidationError
from ..schemas import QuestionCreate, QuestionUpdate, SurveyCreate, SurveyUpdate
from ..utils import utcnow

logger = logging.getLogger(__name__)

CODE_ATTEMPTS = 5


def _letters(value: str) -> str:
    # "São Paulo" -> "SAOPAULO"
    folded = unicodedata.normalize("NFKD", value).encode("ascii", "ignore").decode("ascii")
    return re.sub(r"[^A-Za-z]", "", folded).upper()


def generate_survey_code(city: str, state: str, now_ms: Optional[int] = None) -> str:
    """City initials (3) + state initials (2) + the tail of the epoch milliseconds."""
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    city_code = _letters(city)[:3].ljust(3, "X")
    state_code = _letters(state)[:2].ljust(2, "X")
    return f"{city_code}{state_code}{str(now_ms)[7:]}"


async def _code_exists(db: AsyncSession, code: str) -> bool:
    result = await db.execute(select(models.Survey.id).where(models.Survey.code == code))
    return result.first() is not None


async def _unique_code(db: AsyncSession, city: str, state: str) -> str:
    now_ms = int(time.time() * 1000)
    for attempt in range(CODE_ATTEMPTS):
        code = generate_survey_code(city, state, now_ms + attempt)
        if not await _code_exists(db, code):
            return code
        logger.warning("Survey code %s already taken, regenerating", code)
    raise ValidationError("Could not generate a unique survey code, try again")


def _question_dicts(questions: List[QuestionCreate]) -> List[dict]:
    return [{"id": str(uuid.uuid4()), **q.model_dump()} for q in questions]


async def _insert_survey(db: AsyncSession, survey: models.Survey) -> models.Survey:
    db.add(survey)
    try:
        await db.commit()
    except IntegrityError:
        # A concurrent creation took the same code between check and insert
        await db.rollback()
        logger.warning("Survey code collision on insert: %s", survey.code)
        raise ValidationError("Survey code collision, try again")
    await db.refresh(survey)
    return survey


async def list_surveys(db: AsyncSession, user: models.User) -> List[models.Survey]:
    stmt = select(models.Survey).order_by(models.Survey.created_at.desc())
    if not user.is_admin:
        # Researchers only see what they are assigned to
        assigned = select(models.SurveyAssignment.survey_id).where(
            models.SurveyAssignment.researcher_id == user.id
        )
        stmt = stmt.where(models.Survey.id.in_(assigned))
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def get_survey(
    db: AsyncSession, survey_id: str, user: Optional[models.User] = None
) -> models.Survey:
    survey = await db.get(models.Survey, survey_id)
    if survey is None:
        raise NotFoundError("Survey not found")
    if user is not None and not user.is_admin:
        result = await db.execute(
            select(models.SurveyAssignment.id).where(
                models.SurveyAssignment.survey_id == survey_id,
                models.SurveyAssignment.researcher_id == user.id,
            )
        )
        if result.first() is None:
            raise AuthorizationError("Survey is not assigned to you")
    return survey


async def create_survey(db: AsyncSession, survey_in: SurveyCreate) -> models.Survey:
    code = await _unique_code(db, survey_in.city, survey_in.state)
    now = utcnow()
    survey = models.Survey(
        name=survey_in.name,
        city=survey_in.city,
        state=survey_in.state,
        date=survey_in.date,
        contractor=survey_in.contractor,
        code=code,
        current_manager=(
            survey_in.current_manager.model_dump() if survey_in.current_manager else None
        ),
        questions=_question_dicts(survey_in.questions),
        created_at=now,
        updated_at=now,
    )
    survey = await _insert_survey(db, survey)
    logger.info("Survey '%s' created with code %s", survey.name, survey.code)
    return survey


async def update_survey(
    db: AsyncSession, survey_id: str, survey_in: SurveyUpdate
) -> models.Survey:
    survey = await get_survey(db, survey_id)
    data = survey_in.model_dump(exclude_unset=True)
    if "questions" in data:
        survey.questions = _question_dicts(survey_in.questions or [])
        del data["questions"]
    if "current_manager" in data:
        survey.current_manager = (
            survey_in.current_manager.model_dump() if survey_in.current_manager else None
        )
        del data["current_manager"]
    for key, value in data.items():
        setattr(survey, key, value)
    survey.updated_at = utcnow()
    await db.commit()
    await db.refresh(survey)
    logger.info("Survey %s updated", survey_id)
    return survey


async def delete_survey(db: AsyncSession, survey_id: str) -> None:
    survey = await get_survey(db, survey_id)
    await db.delete(survey)
    await db.commit()
    logger.info("Survey %s deleted", survey_id)


async def duplicate_survey(db: AsyncSession, survey_id: str) -> models.Survey:
    original = await get_survey(db, survey_id)
    code = await _unique_code(db, original.city, original.state)
    now = utcnow()
    copy = models.Survey(
        name=f"{original.name} (Copy)",
        city=original.city,
        state=original.state,
        date=original.date,
        contractor=original.contractor,
        code=code,
        current_manager=dict(original.current_manager) if original.current_manager else None,
        # Fresh question ids so the copy's answers never collide with the original's
        questions=[{**q, "id": str(uuid.uuid4())} for q in (original.questions or [])],
        created_at=now,
        updated_at=now,
    )
    copy = await _insert_survey(db, copy)
    logger.info("Survey %s duplicated as %s", survey_id, copy.id)
    return copy


# --- Embedded questions ---
async def _save_questions(db: AsyncSession, survey: models.Survey, questions: List[dict]):
    # JSON columns only notice a new list object
    survey.questions = questions
    survey.updated_at = utcnow()
    await db.commit()
    await db.refresh(survey)
    return survey


async def add_question(
    db: AsyncSession, survey_id: str, question_in: QuestionCreate
) -> models.Survey:
    survey = await get_survey(db, survey_id)
    questions = list(survey.questions or [])
    questions.extend(_question_dicts([question_in]))
    return await _save_questions(db, survey, questions)


async def update_question(
    db: AsyncSession, survey_id: str, question_id: str, question_in: QuestionUpdate
) -> models.Survey:
    survey = await get_survey(db, survey_id)
    questions = [dict(q) for q in (survey.questions or [])]
    for index, question in enumerate(questions):
        if question["id"] == question_id:
            merged = {**question, **question_in.model_dump(exclude_unset=True)}
            try:
                checked = QuestionCreate(**{k: v for k, v in merged.items() if k != "id"})
            except ValueError as e:
                raise ValidationError(str(e))
            questions[index] = {"id": question_id, **checked.model_dump()}
            return await _save_questions(db, survey, questions)
    raise NotFoundError("Question not found")


async def delete_question(db: AsyncSession, survey_id: str, question_id: str) -> models.Survey:
    survey = await get_survey(db, survey_id)
    questions = [q for q in (survey.questions or []) if q["id"] != question_id]
    if len(questions) == len(survey.questions or []):
        raise NotFoundError("Question not found")
    return await _save_questions(db, survey, questions)
