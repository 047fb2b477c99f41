from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from authentify.api.deps import get_auth_service, get_current_user
from authentify.core.config import settings
from authentify.db.session import get_db
from authentify.models.user import User
from authentify.schemas.auth import (
    AuthOut,
    LoginIn,
    PasswordChangeIn,
    PasswordChangeOut,
    PasswordResetConfirmIn,
    PasswordResetRequestIn,
    PasswordResetRequestOut,
    RegisterIn,
    TokenOut,
    UserOut,
    WalletUpdateIn,
)
from authentify.services.auth import AuthResult, AuthService

router = APIRouter()


def user_out(user: User) -> UserOut:
    return UserOut(
        id=str(user.id),
        email=user.email,
        wallet_address=user.wallet_address,
        created_at=user.created_at,
        last_login_at=user.last_login_at,
    )


def auth_out(result: AuthResult) -> AuthOut:
    return AuthOut(
        user=user_out(result.user),
        tokens=TokenOut(access_token=result.tokens.access_token, refresh_token=result.tokens.refresh_token),
        mode=result.mode,
        transaction_hash=result.transaction_hash,
    )


@router.post("/register", response_model=AuthOut, status_code=201)
def register(payload: RegisterIn, db: Session = Depends(get_db), service: AuthService = Depends(get_auth_service)):
    result = service.register_with_password(db, payload.email, payload.password, payload.wallet_address)
    return auth_out(result)


@router.post("/login", response_model=AuthOut)
def login(payload: LoginIn, db: Session = Depends(get_db), service: AuthService = Depends(get_auth_service)):
    return auth_out(service.login_with_password(db, payload.email, payload.password))


@router.get("/me", response_model=UserOut)
def me(current: User = Depends(get_current_user)):
    return user_out(current)


@router.post("/password", response_model=PasswordChangeOut)
def change_password(
    payload: PasswordChangeIn,
    current: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    service: AuthService = Depends(get_auth_service),
):
    removed = service.change_password(db, current.id, payload.current_password, payload.new_password)
    return PasswordChangeOut(sessions_revoked=removed)


@router.put("/wallet", response_model=UserOut)
def update_wallet(
    payload: WalletUpdateIn,
    current: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    service: AuthService = Depends(get_auth_service),
):
    return user_out(service.update_wallet_address(db, current.id, payload.wallet_address))


@router.post("/password-reset/request", response_model=PasswordResetRequestOut)
def request_password_reset(
    payload: PasswordResetRequestIn,
    db: Session = Depends(get_db),
    service: AuthService = Depends(get_auth_service),
):
    token = service.request_password_reset(db, payload.email)
    # Same answer for known and unknown emails; the token is only echoed in dev.
    return PasswordResetRequestOut(reset_token=token if settings.ENV == "dev" else None)


@router.post("/password-reset/confirm", response_model=AuthOut)
def confirm_password_reset(
    payload: PasswordResetConfirmIn,
    db: Session = Depends(get_db),
    service: AuthService = Depends(get_auth_service),
):
    return auth_out(service.reset_password(db, payload.token, payload.new_password))
