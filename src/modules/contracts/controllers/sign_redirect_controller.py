from fastapi import APIRouter
from fastapi.responses import RedirectResponse

from modules.contracts.services.contract_service import parse_contract_id

router = APIRouter(tags=["contracts"])


@router.get("/sign/{contract_id}", include_in_schema=False)
def sign_redirect(contract_id: str):
    # Old emailed links pointed here
    return RedirectResponse(url=f"/contracts/sign/{parse_contract_id(contract_id)}")
