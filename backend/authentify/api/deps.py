from functools import lru_cache

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from authentify.db.session import engine, get_db
from authentify.models.user import User
from authentify.services.auth import AuthService, build_auth_service

bearer = HTTPBearer()


@lru_cache
def get_auth_service() -> AuthService:
    return build_auth_service(engine)


def get_current_user(
    creds: HTTPAuthorizationCredentials = Depends(bearer),
    db: Session = Depends(get_db),
    service: AuthService = Depends(get_auth_service),
) -> User:
    # InvalidToken / TokenExpired propagate to the AuthError handler
    return service.current_user(db, creds.credentials)
