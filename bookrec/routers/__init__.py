"""
API Routers Package

Thin HTTP layer over the services. Every route resolves its collaborators
from the service container (see bookrec.dependencies).

Router Structure:
- books.py: /api/v1/books/* endpoints (lookup, covers, similar books)
- search.py: /api/v1/search endpoint

Each router is imported and registered in main.py.
"""

from bookrec.routers.books import router as books_router
from bookrec.routers.search import router as search_router

__all__ = [
    "books_router",
    "search_router",
]
