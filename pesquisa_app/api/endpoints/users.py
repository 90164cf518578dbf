import logging
from typing import List

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from ... import auth, crud, models, schemas
from ...changefeed import ChangeFeed
from ...database import get_db_session
from ..deps import get_change_feed

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("", response_model=List[schemas.UserResponse])
async def list_users(
    db: AsyncSession = Depends(get_db_session),
    admin: models.User = Depends(auth.require_admin),
):
    return await crud.crud_user.list_users(db)


@router.post("", response_model=schemas.UserResponse, status_code=status.HTTP_201_CREATED)
async def create_user(
    user_in: schemas.UserCreate,
    db: AsyncSession = Depends(get_db_session),
    admin: models.User = Depends(auth.require_admin),
):
    logger.info("Admin '%s' creates user '%s'", admin.email, user_in.email)
    user, _ = await crud.crud_user.create_user(db, user_in)
    return user


@router.get("/{user_id}", response_model=schemas.UserResponse)
async def get_user(
    user_id: str,
    db: AsyncSession = Depends(get_db_session),
    admin: models.User = Depends(auth.require_admin),
):
    return await crud.crud_user.get_user(db, user_id)


@router.put("/{user_id}", response_model=schemas.UserResponse)
async def update_user(
    user_id: str,
    user_in: schemas.UserUpdate,
    db: AsyncSession = Depends(get_db_session),
    admin: models.User = Depends(auth.require_admin),
):
    return await crud.crud_user.update_user(db, user_id, user_in)


@router.delete("/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_user(
    user_id: str,
    db: AsyncSession = Depends(get_db_session),
    feed: ChangeFeed = Depends(get_change_feed),
    admin: models.User = Depends(auth.require_admin),
):
    logger.info("Admin '%s' deletes user %s", admin.email, user_id)
    await crud.crud_user.delete_user(db, feed, user_id, admin)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{user_id}/assignments", response_model=schemas.AssignmentResponse)
async def assign_survey(
    user_id: str,
    body: schemas.AssignmentCreate,
    response: Response,
    db: AsyncSession = Depends(get_db_session),
    feed: ChangeFeed = Depends(get_change_feed),
    admin: models.User = Depends(auth.require_admin),
):
    logger.info("Admin '%s' assigns survey %s to %s", admin.email, body.survey_id, user_id)
    assignment, created = await crud.crud_assignment.assign_survey(
        db, feed, user_id, body.survey_id
    )
    response.status_code = status.HTTP_201_CREATED if created else status.HTTP_200_OK
    return assignment
