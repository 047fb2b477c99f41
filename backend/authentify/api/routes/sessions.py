from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from authentify.api.deps import get_auth_service, get_current_user
from authentify.db.session import get_db
from authentify.models.user import User
from authentify.schemas.auth import TokenOut
from authentify.schemas.session import LogoutAllOut, LogoutIn, LogoutOut, RefreshIn, SessionOut
from authentify.services.auth import AuthService

router = APIRouter()


@router.post("/refresh", response_model=TokenOut)
def refresh(payload: RefreshIn, db: Session = Depends(get_db), service: AuthService = Depends(get_auth_service)):
    tokens = service.refresh(db, payload.refresh_token)
    return TokenOut(access_token=tokens.access_token, refresh_token=tokens.refresh_token)


@router.post("/logout", response_model=LogoutOut)
def logout(payload: LogoutIn, db: Session = Depends(get_db), service: AuthService = Depends(get_auth_service)):
    # Idempotent: an unknown token is not an error
    return LogoutOut(removed=service.logout(db, payload.refresh_token))


@router.post("/logout-all", response_model=LogoutAllOut)
def logout_all(
    current: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    service: AuthService = Depends(get_auth_service),
):
    return LogoutAllOut(removed=service.logout_all(db, current.id))


@router.get("", response_model=list[SessionOut])
def list_sessions(
    current: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    service: AuthService = Depends(get_auth_service),
):
    return [
        SessionOut(id=str(s.id), created_at=s.created_at, expires_at=s.expires_at, rotated_at=s.rotated_at)
        for s in service.get_sessions(db, current.id)
    ]
