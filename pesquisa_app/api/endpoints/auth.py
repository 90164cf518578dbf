from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from ... import auth, models, schemas
from ...database import get_db_session

router = APIRouter()


@router.post("/login", response_model=schemas.Token)
async def login(credentials: schemas.LoginRequest, db: AsyncSession = Depends(get_db_session)):
    token, user = await auth.sign_in(db, credentials.email, credentials.password)
    await db.commit()
    return schemas.Token(access_token=token, user=schemas.UserResponse.model_validate(user))


@router.post("/logout", response_model=schemas.MessageResponse)
async def logout(
    token: str = Depends(auth.get_current_token),
    db: AsyncSession = Depends(get_db_session),
):
    await auth.sign_out(db, token)
    await db.commit()
    return schemas.MessageResponse(message="Signed out")


@router.get("/session", response_model=schemas.UserResponse)
async def current_session(user: models.User = Depends(auth.get_current_user)):
    return user


@router.post("/confirm-email", response_model=schemas.UserResponse)
async def confirm_email(
    body: schemas.EmailTokenRequest, db: AsyncSession = Depends(get_db_session)
):
    user = await auth.verify_email_confirmation(db, body.token)
    await db.commit()
    return user


@router.post(
    "/password-reset",
    response_model=schemas.MessageResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def password_reset(
    body: schemas.PasswordResetRequest, db: AsyncSession = Depends(get_db_session)
):
    await auth.request_password_reset(db, body.email)
    await db.commit()
    return schemas.MessageResponse(
        message="If the address is registered, a reset link has been sent."
    )


@router.post("/password-reset/confirm", response_model=schemas.MessageResponse)
async def password_reset_confirm(
    body: schemas.PasswordResetConfirm, db: AsyncSession = Depends(get_db_session)
):
    await auth.reset_password(db, body.token, body.password)
    await db.commit()
    return schemas.MessageResponse(message="Password updated")


@router.post("/password", response_model=schemas.MessageResponse)
async def change_password(
    body: schemas.PasswordUpdate,
    user: models.User = Depends(auth.get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    await auth.update_password(db, user, body.password)
    await db.commit()
    return schemas.MessageResponse(message="Password updated")
