from .auth_schemas import (
    LoginRequest, TokenResponse, SignupRequest, UserResponse, AdminCheckResponse,
    AdminUserResponse, UserPageResponse
)

__all__ = [
    'LoginRequest', 'TokenResponse', 'SignupRequest', 'UserResponse', 'AdminCheckResponse',
    'AdminUserResponse', 'UserPageResponse'
]
