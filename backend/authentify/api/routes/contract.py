from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from authentify.api.deps import get_auth_service
from authentify.api.routes.auth import auth_out
from authentify.db.session import get_db
from authentify.schemas.auth import AuthOut
from authentify.schemas.contract import (
    AuthMethodsOut,
    CanLoginOut,
    ChainStatusOut,
    ContractLoginIn,
    ContractRegisterIn,
)
from authentify.services.auth import AuthService

router = APIRouter()


@router.post("/register", response_model=AuthOut, status_code=201)
def register(
    payload: ContractRegisterIn,
    db: Session = Depends(get_db),
    service: AuthService = Depends(get_auth_service),
):
    result = service.register_with_contract(
        db, payload.username, payload.password, payload.social_provider, payload.social_id
    )
    return auth_out(result)


@router.post("/login", response_model=AuthOut)
def login(payload: ContractLoginIn, db: Session = Depends(get_db), service: AuthService = Depends(get_auth_service)):
    return auth_out(service.login_with_contract(db, payload.username, payload.password))


@router.get("/status", response_model=ChainStatusOut)
def status(service: AuthService = Depends(get_auth_service)):
    return ChainStatusOut(enabled=service.bridge is not None, available=service.chain_available())


@router.get("/auth-methods/{account_address}", response_model=AuthMethodsOut)
def auth_methods(
    account_address: str,
    db: Session = Depends(get_db),
    service: AuthService = Depends(get_auth_service),
):
    methods = service.get_auth_methods(db, account_address)
    return AuthMethodsOut(account_address=account_address, methods=methods)


@router.get("/can-login/{account_address}", response_model=CanLoginOut)
def can_login(
    account_address: str,
    db: Session = Depends(get_db),
    service: AuthService = Depends(get_auth_service),
):
    eligibility = service.can_user_login(db, account_address)
    return CanLoginOut(
        account_address=account_address,
        can_login=eligibility.can_login,
        auth_methods=eligibility.auth_methods,
    )
