from .contract import Contract, ContractParty, ContractStatus
from .signature import Signature
from .signing_token import SigningToken

__all__ = ['Contract', 'ContractParty', 'ContractStatus', 'Signature', 'SigningToken']
