from pydantic import BaseModel, Field


class ContractRegisterIn(BaseModel):
    username: str = Field(..., min_length=3, max_length=32, examples=["alice"])
    password: str = Field(..., min_length=1, max_length=128)
    social_provider: str | None = Field(default=None, max_length=32, examples=["google"])
    social_id: str | None = Field(default=None, max_length=255)


class ContractLoginIn(BaseModel):
    username: str = Field(..., min_length=1, max_length=64)
    password: str = Field(..., min_length=1, max_length=128)


class AuthMethodsOut(BaseModel):
    account_address: str
    methods: list[str]


class ChainStatusOut(BaseModel):
    enabled: bool
    available: bool


class CanLoginOut(BaseModel):
    account_address: str
    can_login: bool
    auth_methods: list[str]
