from .contract_schemas import (
    AdminContractPage, ContractCreate, ContractJson, ContractResponse, ContractStatsResponse,
    ContractUpdate, FinalizeContractRequest, FinalizeContractResponse, IssueTokenRequest,
    SendContractRequest, SendContractResponse, SignRequest, SignResponse, SigningTokenResponse,
    TokenStateResponse, ValidateTokenRequest, ValidateTokenResponse
)

__all__ = [
    'AdminContractPage', 'ContractCreate', 'ContractJson', 'ContractResponse', 'ContractStatsResponse',
    'ContractUpdate', 'FinalizeContractRequest', 'FinalizeContractResponse', 'IssueTokenRequest',
    'SendContractRequest', 'SendContractResponse', 'SignRequest', 'SignResponse', 'SigningTokenResponse',
    'TokenStateResponse', 'ValidateTokenRequest', 'ValidateTokenResponse'
]
