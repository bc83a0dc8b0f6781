from .cleanup import delete_expired_tokens
from .contract_service import ContractService
from .contract_state_service import ContractStateService
from .signing_service import SigningService
from .token_service import TokenService

__all__ = [
    'delete_expired_tokens',
    'ContractService',
    'ContractStateService',
    'SigningService',
    'TokenService',
]
