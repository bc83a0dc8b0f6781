from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from database import get_db
from errors import ValidationError
from modules.auth.dependencies import require_admin
from modules.auth.models.user import User
from modules.auth.schemas import UserPageResponse
from modules.auth.services.auth_service import AuthService
from modules.contracts.models.contract import ContractStatus
from modules.contracts.schemas import AdminContractPage, ContractStatsResponse
from modules.contracts.services import ContractService

router = APIRouter(prefix="/admin", tags=["admin"])

PAGE_SIZE = 10


def parse_status_filter(value: str) -> Optional[ContractStatus]:
    if value == "all":
        return None
    try:
        return ContractStatus(value)
    except ValueError:
        raise ValidationError(
            f"Unknown status '{value}'",
            details={'allowedStatuses': ["all"] + [status.value for status in ContractStatus]},
        )


@router.get("/stats", response_model=ContractStatsResponse)
def contract_stats(
    limit: int = Query(default=5, ge=1, le=50),
    db: Session = Depends(get_db),
    _admin: User = Depends(require_admin),
):
    """Contract counts per status plus the latest activity."""
    return ContractService.stats(db, limit)


@router.get("/contracts", response_model=AdminContractPage)
def list_all_contracts(
    page: int = Query(default=1, ge=1),
    search: Optional[str] = Query(default=None, max_length=255),
    status: str = Query(default="all"),
    db: Session = Depends(get_db),
    _admin: User = Depends(require_admin),
):
    return ContractService.search_contracts(
        db, page=page, per_page=PAGE_SIZE, search=search, status=parse_status_filter(status)
    )


@router.get("/users", response_model=UserPageResponse)
def list_users(
    page: int = Query(default=1, ge=1),
    search: Optional[str] = Query(default=None, max_length=255),
    db: Session = Depends(get_db),
    _admin: User = Depends(require_admin),
):
    return AuthService.search_users(db, page=page, per_page=PAGE_SIZE, search=search)
