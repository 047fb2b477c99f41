from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=None, extra="ignore")

    ENV: str = "prod"

    DATABASE_URL: str

    DB_POOL_SIZE: int = 5
    DB_MAX_OVERFLOW: int = 5
    DB_POOL_TIMEOUT_SECONDS: int = 30
    DB_POOL_RECYCLE_SECONDS: int = 1800

    # Access and refresh tokens are signed with independent keys
    JWT_SECRET: str
    JWT_REFRESH_SECRET: str
    JWT_ACCESS_MINUTES: int = 15
    JWT_REFRESH_DAYS: int = 7

    SESSION_TTL_DAYS: int = 7

    PASSWORD_MIN_LENGTH: int = 8
    PASSWORD_RESET_MINUTES: int = 60
    IDENTITY_PEPPER: str = "CHANGE_ME"

    # WebAuthn relying party
    RP_NAME: str = "Authentify"
    RP_ID: str = "localhost"
    RP_ORIGIN: str = "http://localhost:3000"
    WEBAUTHN_TIMEOUT_MS: int = 60000
    CHALLENGE_TTL_SECONDS: int = 300

    # Identity ledger (ink! contract on a Substrate chain)
    CHAIN_ENABLED: bool = False
    SUBSTRATE_WS_ENDPOINT: str = "ws://127.0.0.1:9944"
    CONTRACT_ADDRESS: str = "5GrwvaEF5zXb26Fz9rcQpDWS57CtERHpNehXCPcNoHGKutQY"
    CONTRACT_METADATA_PATH: str = "contract-metadata.json"
    SERVICE_ACCOUNT_SEED: str = "//Alice"
    CHAIN_CALL_TIMEOUT_SECONDS: float = 15.0
    CHAIN_GAS_MULTIPLIER: float = 1.2
    CHAIN_WORKERS: int = 4

    FALLBACK_EMAIL_DOMAIN: str = "authentify.local"

    ALLOWED_HOSTS: str = "localhost,127.0.0.1"
    SECURITY_HEADERS_ENABLED: bool = True

    LOG_LEVEL: str = "INFO"
    LOG_DIR: str | None = None

settings = Settings()
