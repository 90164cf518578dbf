import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ... import auth, crud, models, schemas
from ...changefeed import ChangeFeed
from ...database import get_db_session
from ..deps import get_change_feed

logger = logging.getLogger(__name__)

router = APIRouter()


# Declared before "/{assignment_id}/..." routes so "orphans" is never taken for an id
@router.delete("/orphans", response_model=schemas.OrphanPurgeResponse)
async def purge_orphans(
    db: AsyncSession = Depends(get_db_session),
    feed: ChangeFeed = Depends(get_change_feed),
    admin: models.User = Depends(auth.require_admin),
):
    logger.info("Admin '%s' purges orphaned assignments", admin.email)
    removed = await crud.crud_assignment.purge_orphaned_assignments(db, feed)
    return schemas.OrphanPurgeResponse(removed=removed)


@router.patch("/{assignment_id}/status", response_model=schemas.AssignmentResponse)
async def update_assignment_status(
    assignment_id: str,
    body: schemas.AssignmentStatusUpdate,
    db: AsyncSession = Depends(get_db_session),
    feed: ChangeFeed = Depends(get_change_feed),
    user: models.User = Depends(auth.get_current_user),
):
    return await crud.crud_assignment.update_status(db, feed, assignment_id, body.status, user)


@router.post("/{assignment_id}/answers", response_model=schemas.AnswerSubmissionResponse)
async def submit_answers(
    assignment_id: str,
    submission: schemas.AnswerSubmission,
    db: AsyncSession = Depends(get_db_session),
    feed: ChangeFeed = Depends(get_change_feed),
    user: models.User = Depends(auth.get_current_user),
):
    assignment, count = await crud.crud_assignment.submit_answers(
        db, feed, assignment_id, submission, user
    )
    return schemas.AnswerSubmissionResponse(
        assignment=schemas.AssignmentResponse.model_validate(assignment),
        answer_count=count,
    )
