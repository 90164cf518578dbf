import logging
from typing import List

from fastapi import APIRouter, BackgroundTasks, Depends, Request, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ... import auth, config, crud, models, schemas
from ...changefeed import ChangeFeed
from ...database import get_db_session
from ..deps import get_change_feed

logger = logging.getLogger(__name__)

router = APIRouter()


async def perform_orphan_cleanup(session_factory, feed: ChangeFeed) -> None:
    """Background task: drop assignments left pointing at deleted surveys."""
    async with session_factory() as session:
        try:
            removed = await crud.crud_assignment.purge_orphaned_assignments(session, feed)
            logger.info("Background orphan cleanup removed %d assignments", removed)
        except SQLAlchemyError:
            await session.rollback()
            logger.exception("Background orphan cleanup failed")


@router.get("", response_model=List[schemas.SurveyResponse])
async def list_surveys(
    db: AsyncSession = Depends(get_db_session),
    user: models.User = Depends(auth.get_current_user),
):
    """Admins get every survey, researchers only the ones assigned to them."""
    return await crud.crud_survey.list_surveys(db, user)


@router.post("", response_model=schemas.SurveyResponse, status_code=status.HTTP_201_CREATED)
async def create_survey(
    survey_in: schemas.SurveyCreate,
    db: AsyncSession = Depends(get_db_session),
    admin: models.User = Depends(auth.require_admin),
):
    logger.info("Admin '%s' creates survey '%s'", admin.email, survey_in.name)
    return await crud.crud_survey.create_survey(db, survey_in)


@router.get("/{survey_id}", response_model=schemas.SurveyResponse)
async def get_survey(
    survey_id: str,
    db: AsyncSession = Depends(get_db_session),
    user: models.User = Depends(auth.get_current_user),
):
    return await crud.crud_survey.get_survey(db, survey_id, user)


@router.put("/{survey_id}", response_model=schemas.SurveyResponse)
async def update_survey(
    survey_id: str,
    survey_in: schemas.SurveyUpdate,
    db: AsyncSession = Depends(get_db_session),
    admin: models.User = Depends(auth.require_admin),
):
    logger.info("Admin '%s' updates survey %s", admin.email, survey_id)
    return await crud.crud_survey.update_survey(db, survey_id, survey_in)


@router.delete("/{survey_id}", response_model=schemas.SurveyDeleteResponse)
async def delete_survey(
    survey_id: str,
    request: Request,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db_session),
    feed: ChangeFeed = Depends(get_change_feed),
    admin: models.User = Depends(auth.require_admin),
):
    logger.info("Admin '%s' deletes survey %s", admin.email, survey_id)
    await crud.crud_survey.delete_survey(db, survey_id)
    if config.PURGE_ORPHANS_ON_SURVEY_DELETE:
        background_tasks.add_task(
            perform_orphan_cleanup, request.app.state.session_factory, feed
        )
    return schemas.SurveyDeleteResponse(message="Survey deleted", survey_id=survey_id)


@router.post(
    "/{survey_id}/duplicate",
    response_model=schemas.SurveyResponse,
    status_code=status.HTTP_201_CREATED,
)
async def duplicate_survey(
    survey_id: str,
    db: AsyncSession = Depends(get_db_session),
    admin: models.User = Depends(auth.require_admin),
):
    return await crud.crud_survey.duplicate_survey(db, survey_id)


@router.post(
    "/{survey_id}/questions",
    response_model=schemas.SurveyResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_question(
    survey_id: str,
    question_in: schemas.QuestionCreate,
    db: AsyncSession = Depends(get_db_session),
    admin: models.User = Depends(auth.require_admin),
):
    return await crud.crud_survey.add_question(db, survey_id, question_in)


@router.put("/{survey_id}/questions/{question_id}", response_model=schemas.SurveyResponse)
async def update_question(
    survey_id: str,
    question_id: str,
    question_in: schemas.QuestionUpdate,
    db: AsyncSession = Depends(get_db_session),
    admin: models.User = Depends(auth.require_admin),
):
    return await crud.crud_survey.update_question(db, survey_id, question_id, question_in)


@router.delete("/{survey_id}/questions/{question_id}", response_model=schemas.SurveyResponse)
async def delete_question(
    survey_id: str,
    question_id: str,
    db: AsyncSession = Depends(get_db_session),
    admin: models.User = Depends(auth.require_admin),
):
    return await crud.crud_survey.delete_question(db, survey_id, question_id)


@router.get("/{survey_id}/assignments", response_model=List[schemas.AssignmentResponse])
async def list_survey_assignments(
    survey_id: str,
    db: AsyncSession = Depends(get_db_session),
    admin: models.User = Depends(auth.require_admin),
):
    await crud.crud_survey.get_survey(db, survey_id)
    return await crud.crud_assignment.list_for_survey(db, survey_id)
