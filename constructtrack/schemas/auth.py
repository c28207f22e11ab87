import uuid
from pydantic import BaseModel, EmailStr, Field
from typing import Optional, List


class RegisterRequest(BaseModel):
    company_name: str = Field(min_length=1, max_length=255)
    company_email: Optional[EmailStr] = None
    company_phone: Optional[str] = None
    email: EmailStr
    password: str = Field(min_length=8)
    first_name: Optional[str] = None
    last_name: Optional[str] = None


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class RefreshRequest(BaseModel):
    refresh_token: str


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    session_id: str


class ImpersonationInfo(BaseModel):
    tenant_id: uuid.UUID
    tenant_name: Optional[str] = None


class MeResponse(BaseModel):
    id: str
    email: EmailStr
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    role: str
    tenant_id: Optional[str] = None
    effective_tenant_id: Optional[str] = None
    permissions: List[str] = []
    impersonating: Optional[ImpersonationInfo] = None
