from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from authentify.api.deps import get_auth_service, get_current_user
from authentify.api.routes.auth import auth_out
from authentify.core.errors import CredentialNotFound
from authentify.db.session import get_db
from authentify.models.biometric import BiometricCredential
from authentify.models.user import User
from authentify.schemas.auth import SimpleOKOut
from authentify.schemas.biometric import (
    BiometricLoginBeginIn,
    BiometricLoginCompleteIn,
    BiometricRegisterBeginIn,
    BiometricRegisterCompleteIn,
    BiometricResultOut,
    CredentialOut,
)
from authentify.services.auth import AuthService, BiometricResult

router = APIRouter()


def credential_out(credential: BiometricCredential) -> CredentialOut:
    return CredentialOut(
        credential_id=credential.credential_id,
        authenticator_kind=credential.authenticator_kind,
        counter=credential.counter,
        created_at=credential.created_at,
        last_used_at=credential.last_used_at,
    )


def _result_out(result: BiometricResult) -> BiometricResultOut:
    return BiometricResultOut(
        verified=result.verified,
        reason=result.reason,
        credential=credential_out(result.credential) if result.credential else None,
        auth=auth_out(result.auth) if result.auth else None,
    )


@router.post("/register/begin")
def register_begin(
    payload: BiometricRegisterBeginIn,
    db: Session = Depends(get_db),
    service: AuthService = Depends(get_auth_service),
):
    return service.begin_biometric_registration(db, payload.email, payload.display_name, payload.authenticator_kind)


@router.post("/register/complete", response_model=BiometricResultOut)
def register_complete(
    payload: BiometricRegisterCompleteIn,
    db: Session = Depends(get_db),
    service: AuthService = Depends(get_auth_service),
):
    result = service.complete_biometric_registration(
        db, payload.email, payload.attestation, payload.authenticator_kind
    )
    return _result_out(result)


@router.post("/login/begin")
def login_begin(
    payload: BiometricLoginBeginIn,
    db: Session = Depends(get_db),
    service: AuthService = Depends(get_auth_service),
):
    return service.begin_biometric_login(db, payload.email)


@router.post("/login/complete", response_model=BiometricResultOut)
def login_complete(
    payload: BiometricLoginCompleteIn,
    db: Session = Depends(get_db),
    service: AuthService = Depends(get_auth_service),
):
    return _result_out(service.complete_biometric_login(db, payload.email, payload.assertion))


@router.get("/credentials", response_model=list[CredentialOut])
def list_credentials(
    current: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    service: AuthService = Depends(get_auth_service),
):
    return [credential_out(c) for c in service.list_biometric_credentials(db, current.id)]


@router.delete("/credentials/{credential_id}", response_model=SimpleOKOut)
def delete_credential(
    credential_id: str,
    current: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    service: AuthService = Depends(get_auth_service),
):
    if not service.delete_biometric_credential(db, current.id, credential_id):
        raise CredentialNotFound()
    return SimpleOKOut()
