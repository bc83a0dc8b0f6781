from .admin_controller import router as admin_router

__all__ = ['admin_router']
