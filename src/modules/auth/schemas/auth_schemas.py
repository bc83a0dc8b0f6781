from datetime import datetime
from pydantic import BaseModel, EmailStr, Field
from typing import List, Optional
from modules.auth.models.user import UserRole

class LoginRequest(BaseModel):
    email: EmailStr
    password: str

class TokenResponse(BaseModel):
    access_token: str
    token_type: str
    user_id: int
    user_name: str
    user_role: str

class SignupRequest(BaseModel):
    name: str = Field(min_length=1)
    email: EmailStr
    password: str = Field(min_length=8)

class UserResponse(BaseModel):
    id: int
    name: str
    email: str
    role: UserRole
    is_active: bool
    created_at: datetime
    last_login_at: Optional[datetime] = None

    model_config = {"from_attributes": True}

class AdminCheckResponse(BaseModel):
    is_admin: bool

class AdminUserResponse(UserResponse):
    contracts_created: int

class UserPageResponse(BaseModel):
    users: List[AdminUserResponse]
    total: int
    page: int
    total_pages: int
