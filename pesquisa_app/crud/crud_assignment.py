import logging
from typing import List, Optional, Tuple

from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from .. import models
from ..changefeed import DELETE, INSERT, UPDATE, ChangeEvent, ChangeFeed
from ..errors import AuthorizationError, NotFoundError, ValidationError
from ..schemas import AnswerSubmission
from ..utils import utcnow

logger = logging.getLogger(__name__)

TABLE = models.SurveyAssignment.__tablename__


def _publish(feed: Optional[ChangeFeed], event_type: str, record: dict, old_record=None):
    if feed is not None:
        feed.publish(ChangeEvent(TABLE, event_type, record, old_record))


async def find_assignment(
    db: AsyncSession, researcher_id: str, survey_id: str
) -> Optional[models.SurveyAssignment]:
    result = await db.execute(
        select(models.SurveyAssignment).where(
            models.SurveyAssignment.researcher_id == researcher_id,
            models.SurveyAssignment.survey_id == survey_id,
        )
    )
    return result.scalar_one_or_none()


async def get_assignment(db: AsyncSession, assignment_id: str) -> models.SurveyAssignment:
    assignment = await db.get(models.SurveyAssignment, assignment_id)
    if assignment is None:
        raise NotFoundError("Assignment not found")
    return assignment


async def assign_survey(
    db: AsyncSession, feed: Optional[ChangeFeed], researcher_id: str, survey_id: str
) -> Tuple[models.SurveyAssignment, bool]:
    """
    Links a researcher to a survey. Idempotent per (researcher, survey): an
    existing assignment is returned unchanged instead of inserting a second
    one. Returns the assignment and whether it was created by this call.
    """
    if not researcher_id or not survey_id:
        raise ValidationError("Researcher and survey ids are required")

    researcher = await db.get(models.User, researcher_id)
    if researcher is None:
        raise NotFoundError("Researcher not found")
    if researcher.role != models.ROLE_RESEARCHER:
        raise ValidationError("User is not a researcher")
    survey = await db.get(models.Survey, survey_id)
    if survey is None:
        raise NotFoundError("Survey not found")
    researcher_name, survey_name = researcher.name, survey.name

    existing = await find_assignment(db, researcher_id, survey_id)
    if existing is not None:
        logger.info("Assignment already exists: %s", existing.id)
        return existing, False

    assignment = models.SurveyAssignment(
        researcher_id=researcher_id,
        survey_id=survey_id,
        status=models.STATUS_PENDING,
        assigned_at=utcnow(),
    )
    db.add(assignment)
    try:
        await db.commit()
    except IntegrityError:
        # Lost a race against an identical request; the unique pair holds
        await db.rollback()
        existing = await find_assignment(db, researcher_id, survey_id)
        if existing is None:
            raise
        logger.info("Concurrent assignment resolved to existing %s", existing.id)
        return existing, False

    await db.refresh(assignment)
    logger.info(
        "Survey '%s' assigned to researcher '%s' (%s)",
        survey_name,
        researcher_name,
        assignment.id,
    )
    _publish(feed, INSERT, assignment.to_record())
    return assignment, True


async def list_for_survey(db: AsyncSession, survey_id: str) -> List[models.SurveyAssignment]:
    result = await db.execute(
        select(models.SurveyAssignment)
        .where(models.SurveyAssignment.survey_id == survey_id)
        .order_by(models.SurveyAssignment.assigned_at.desc())
    )
    return list(result.scalars().all())


def _check_actor(assignment: models.SurveyAssignment, actor: models.User) -> None:
    if not actor.is_admin and assignment.researcher_id != actor.id:
        raise AuthorizationError("Assignment belongs to another researcher")


async def update_status(
    db: AsyncSession,
    feed: Optional[ChangeFeed],
    assignment_id: str,
    new_status: str,
    actor: models.User,
) -> models.SurveyAssignment:
    assignment = await get_assignment(db, assignment_id)
    _check_actor(assignment, actor)

    statuses = models.ASSIGNMENT_STATUSES
    if new_status not in statuses:
        raise ValidationError(f"Unknown status '{new_status}'")
    if new_status == assignment.status:
        return assignment
    if statuses.index(new_status) < statuses.index(assignment.status):
        raise ValidationError(
            f"Cannot move assignment from '{assignment.status}' back to '{new_status}'"
        )

    old_record = assignment.to_record()
    assignment.status = new_status
    if new_status == models.STATUS_COMPLETED:
        assignment.completed_at = utcnow()
    await db.commit()
    await db.refresh(assignment)
    logger.info("Assignment %s moved to %s", assignment_id, new_status)
    _publish(feed, UPDATE, assignment.to_record(), old_record)
    return assignment


async def submit_answers(
    db: AsyncSession,
    feed: Optional[ChangeFeed],
    assignment_id: str,
    submission: AnswerSubmission,
    actor: models.User,
) -> Tuple[models.SurveyAssignment, int]:
    assignment = await get_assignment(db, assignment_id)
    if assignment.researcher_id != actor.id:
        raise AuthorizationError("Only the assigned researcher can answer this survey")
    if assignment.status == models.STATUS_COMPLETED:
        raise ValidationError("Assignment already completed")
    survey = await db.get(models.Survey, assignment.survey_id)
    if survey is None:
        raise NotFoundError("Survey not found")

    questions = {q["id"]: q for q in (survey.questions or [])}
    answered = {}
    for item in submission.answers:
        question = questions.get(item.question_id)
        if question is None:
            raise ValidationError(f"Unknown question '{item.question_id}'")
        if question["type"] == "multiple_choice" and item.answer not in (question.get("options") or []):
            raise ValidationError(f"Invalid choice for question '{item.question_id}'")
        answered[item.question_id] = item.answer
    missing = [
        qid for qid, q in questions.items() if q.get("required") and not answered.get(qid)
    ]
    if missing:
        raise ValidationError(f"Missing answers for required questions: {', '.join(missing)}")

    db.add_all(
        [
            models.Answer(
                survey_id=survey.id,
                question_id=question_id,
                researcher_id=actor.id,
                answer=answer,
                created_at=utcnow(),
            )
            for question_id, answer in answered.items()
        ]
    )
    old_record = assignment.to_record()
    assignment.status = models.STATUS_COMPLETED
    assignment.completed_at = utcnow()
    await db.commit()
    await db.refresh(assignment)
    logger.info("%d answers stored for assignment %s", len(answered), assignment_id)
    _publish(feed, UPDATE, assignment.to_record(), old_record)
    return assignment, len(answered)


async def delete_for_researcher(
    db: AsyncSession, researcher_id: str
) -> List[dict]:
    """Deletes a researcher's assignments without committing; returns the removed records."""
    result = await db.execute(
        select(models.SurveyAssignment).where(
            models.SurveyAssignment.researcher_id == researcher_id
        )
    )
    records = [a.to_record() for a in result.scalars().all()]
    await db.execute(
        delete(models.SurveyAssignment).where(
            models.SurveyAssignment.researcher_id == researcher_id
        )
    )
    await db.flush()
    return records


async def purge_orphaned_assignments(db: AsyncSession, feed: Optional[ChangeFeed]) -> int:
    """Removes assignments whose survey no longer exists."""
    result = await db.execute(
        select(models.SurveyAssignment)
        .outerjoin(models.Survey, models.Survey.id == models.SurveyAssignment.survey_id)
        .where(models.Survey.id.is_(None))
    )
    orphans = list(result.scalars().all())
    if not orphans:
        return 0
    records = [o.to_record() for o in orphans]
    await db.execute(
        delete(models.SurveyAssignment).where(
            models.SurveyAssignment.id.in_([r["id"] for r in records])
        )
    )
    await db.commit()
    logger.info("Purged %d orphaned assignments", len(records))
    for record in records:
        _publish(feed, DELETE, {}, record)
    return len(records)
