# Routes package __init__.py - re-exports routers for main.py convenience
from .search import router as search_router
from .admin import router as admin_router

__all__ = ['search_router', 'admin_router']
