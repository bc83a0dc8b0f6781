import logging
import math
from datetime import datetime, timedelta
from typing import Optional

from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy import or_
from sqlalchemy.orm import Session, selectinload

from config import settings
from modules.auth.models.user import User

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

class AuthService:

    @staticmethod
    def verify_password(plain_password: str, hashed_password: str) -> bool:
        return pwd_context.verify(plain_password, hashed_password)

    @staticmethod
    def get_password_hash(password: str) -> str:
        return pwd_context.hash(password)

    @staticmethod
    def normalize_email(email: str) -> str:
        return email.strip().lower()

    @staticmethod
    def find_by_email(db: Session, email: str) -> Optional[User]:
        return db.query(User).filter(User.email == AuthService.normalize_email(email)).first()

    @staticmethod
    def authenticate_user(db: Session, email: str, password: str) -> Optional[User]:
        """Return the active user matching the credentials, or None."""
        user = AuthService.find_by_email(db, email)
        if user is None or not user.is_active:
            logger.info("Login rejected for unknown or inactive account")
            return None
        if not AuthService.verify_password(password, user.password_hash):
            logger.info("Login rejected for user %s: wrong password", user.id)
            return None
        user.last_login_at = datetime.utcnow()
        db.commit()
        return user

    @staticmethod
    def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
        lifetime = expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
        claims = {**data, "exp": datetime.utcnow() + lifetime}
        return jwt.encode(claims, settings.secret_key, algorithm=ALGORITHM)

    @staticmethod
    def verify_token(token: str) -> Optional[str]:
        """Email carried in a valid access token, or None."""
        try:
            payload = jwt.decode(token, settings.secret_key, algorithms=[ALGORITHM])
        except JWTError:
            return None
        return payload.get("sub")

    @staticmethod
    def get_current_user(db: Session, token: str) -> Optional[User]:
        email = AuthService.verify_token(token)
        if email is None:
            return None
        return AuthService.find_by_email(db, email)

    @staticmethod
    def search_users(db: Session, page: int = 1, per_page: int = 10, search: Optional[str] = None) -> dict:
        query = db.query(User)
        if search:
            pattern = f"%{search.strip()}%"
            query = query.filter(or_(User.name.ilike(pattern), User.email.ilike(pattern)))
        total = query.count()
        users = (
            query.options(selectinload(User.contracts))
            .order_by(User.created_at.desc(), User.id.desc())
            .offset((page - 1) * per_page)
            .limit(per_page)
            .all()
        )
        return {"users": users, "total": total, "page": page, "total_pages": math.ceil(total / per_page)}
