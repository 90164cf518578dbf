import logging
from typing import List, Optional, Tuple

from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from .. import auth, models
from ..changefeed import DELETE, ChangeEvent, ChangeFeed
from ..errors import NotFoundError, ValidationError
from ..schemas import UserCreate, UserUpdate
from . import crud_assignment

logger = logging.getLogger(__name__)


async def list_users(db: AsyncSession) -> List[models.User]:
    result = await db.execute(select(models.User).order_by(models.User.name))
    return list(result.scalars().all())


async def get_user(db: AsyncSession, user_id: str) -> models.User:
    user = await db.get(models.User, user_id)
    if user is None:
        raise NotFoundError("User not found")
    return user


async def create_user(
    db: AsyncSession, user_in: UserCreate, email_confirmed: bool = False
) -> Tuple[models.User, Optional[str]]:
    """
    Creates the account and its profile in one step. Unless already confirmed,
    a confirmation email token is issued and returned alongside the user.
    """
    if await auth.get_user_by_email(db, user_in.email) is not None:
        raise ValidationError("Email already registered")

    user = models.User(
        name=user_in.name,
        email=user_in.email,
        cpf=user_in.cpf,
        role=user_in.role,
        password_hash=auth.hash_password(user_in.password),
        email_confirmed=email_confirmed,
        first_access=True,
    )
    db.add(user)
    try:
        await db.flush()
    except IntegrityError:
        await db.rollback()
        raise ValidationError("Email already registered")

    token = None
    if not email_confirmed:
        token = await auth.issue_email_token(db, user, auth.PURPOSE_CONFIRM_EMAIL)
    await db.commit()
    await db.refresh(user)
    logger.info("User '%s' created with role %s", user.email, user.role)
    return user, token


async def update_user(db: AsyncSession, user_id: str, user_in: UserUpdate) -> models.User:
    user = await get_user(db, user_id)
    data = user_in.model_dump(exclude_unset=True)
    if "email" in data and data["email"] != user.email:
        if await auth.get_user_by_email(db, data["email"]) is not None:
            raise ValidationError("Email already registered")
    for key, value in data.items():
        setattr(user, key, value)
    await db.commit()
    await db.refresh(user)
    return user


async def delete_user(
    db: AsyncSession, feed: Optional[ChangeFeed], user_id: str, actor: models.User
) -> None:
    """Deletes assignments first, then sessions and tokens, then the identity row."""
    if user_id == actor.id:
        raise ValidationError("You cannot delete your own account")
    user = await get_user(db, user_id)
    email = user.email

    removed = await crud_assignment.delete_for_researcher(db, user_id)
    await db.execute(delete(models.Answer).where(models.Answer.researcher_id == user_id))
    await db.execute(delete(models.AuthSession).where(models.AuthSession.user_id == user_id))
    await db.execute(delete(models.EmailToken).where(models.EmailToken.user_id == user_id))
    await db.flush()
    await db.delete(user)
    await db.commit()
    logger.info("User '%s' deleted with %d assignments", email, len(removed))

    if feed is not None:
        for record in removed:
            feed.publish(ChangeEvent(crud_assignment.TABLE, DELETE, {}, record))
