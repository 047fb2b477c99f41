from fastapi import APIRouter
from authentify.api.routes import auth, biometric, contract, sessions

router = APIRouter()
router.include_router(auth.router, prefix="/auth", tags=["auth"])
router.include_router(biometric.router, prefix="/biometric", tags=["biometric"])
router.include_router(contract.router, prefix="/contract", tags=["contract"])
router.include_router(sessions.router, prefix="/sessions", tags=["sessions"])
