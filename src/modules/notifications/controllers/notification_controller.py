# modules/notifications/controllers/notification_controller.py
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import List

from database import get_db
from modules.auth.dependencies import get_current_user
from modules.auth.models.user import User
from modules.contracts.services.contract_service import ContractService
from modules.notifications.repositories.notification_repository import NotificationRepository
from modules.notifications.services.mailer import SmtpMailer
from modules.notifications.services.notification_service import NotificationService
from modules.notifications.models.schemas import NotificationDeliveryResponse

router = APIRouter()


def get_mailer() -> SmtpMailer:
    return SmtpMailer.from_settings()


def get_notification_service(
    db: Session = Depends(get_db),
    mailer: SmtpMailer = Depends(get_mailer),
) -> NotificationService:
    repo = NotificationRepository(db)
    return NotificationService(repo, mailer)


@router.get(
    "/contracts/{contract_id}",
    response_model=List[NotificationDeliveryResponse],
    summary="Email deliveries recorded for a contract"
)
def list_contract_notifications(
    contract_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    service: NotificationService = Depends(get_notification_service)
):
    contract = ContractService.get_contract(db, contract_id, service)
    ContractService.check_access(contract, current_user)
    return service.get_deliveries(contract.id)
