from datetime import datetime
from pydantic import BaseModel, Field


class CredentialsIn(BaseModel):
    email: str = Field(..., min_length=3, pattern=r"^[^@\s]+@[^@\s]+$")
    password: str = Field(..., min_length=6)


class TokenOut(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_at: datetime
    role: str


class AdminOut(BaseModel):
    id: str
    email: str
    created_at: datetime
    role: str = "admin"

    class Config:
        from_attributes = True


class AuthStatusOut(BaseModel):
    admin_exists: bool
