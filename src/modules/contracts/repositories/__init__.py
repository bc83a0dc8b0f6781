from .contract_repository import ContractRepository
from .signature_repository import SignatureRepository
from .token_repository import TokenRepository

__all__ = ['ContractRepository', 'SignatureRepository', 'TokenRepository']
