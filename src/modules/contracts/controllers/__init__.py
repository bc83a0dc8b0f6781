from .contract_controller import router as contract_router
from .sign_redirect_controller import router as sign_redirect_router

__all__ = ['contract_router', 'sign_redirect_router']
