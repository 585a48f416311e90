from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from mindwell.db import get_db
from mindwell.models import User
from mindwell.schemas import UserCreate, Token, UserPublic
from mindwell.services.auth_service import (
    create_access_token, verify_password, hash_password, get_current_user
)

router = APIRouter(prefix="/auth", tags=["auth"])


async def get_user_by_email(db: AsyncSession, email: str):
    q = select(User).where(User.email == email)
    res = await db.execute(q)
    return res.scalar_one_or_none()


@router.post("/register", response_model=UserPublic, status_code=status.HTTP_201_CREATED)
async def register_user(user_in: UserCreate, db: AsyncSession = Depends(get_db)):
    existing_user = await get_user_by_email(db, user_in.email)
    if existing_user:
        raise HTTPException(status_code=400, detail="Email already registered.")

    if user_in.therapist_id is not None:
        therapist = await db.get(User, user_in.therapist_id)
        if therapist is None or therapist.role != "therapist":
            raise HTTPException(status_code=400, detail="Terapeuta informado não existe")

    user = User(
        email=user_in.email,
        password_hash=hash_password(user_in.password),
        role=user_in.role,
        first_name=user_in.first_name,
        last_name=user_in.last_name,
        specialization=user_in.specialization if user_in.role == "therapist" else None,
        therapist_id=user_in.therapist_id if user_in.role == "patient" else None,
    )
    db.add(user)
    await db.commit()
    return user


@router.post("/login", response_model=Token)
async def login_for_access_token(
    form_data: OAuth2PasswordRequestForm = Depends(),
    db: AsyncSession = Depends(get_db)
):
    # OAuth2 form: username carries the email
    user = await get_user_by_email(db, form_data.username)

    if not user or not user.password_hash or not verify_password(form_data.password, user.password_hash):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )
    access_token = create_access_token(
        data={"sub": str(user.id), "role": user.role}
    )
    return Token(access_token=access_token, token_type="bearer")


@router.get("/me", response_model=UserPublic)
async def get_my_info(current_user: User = Depends(get_current_user)):
    """현재 인증된 사용자 정보를 반환합니다."""
    return current_user
