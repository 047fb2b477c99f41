from authentify.models.user import User
from authentify.models.auth_session import AuthSession
from authentify.models.biometric import BiometricCredential
from authentify.models.audit_log import AuditLog
