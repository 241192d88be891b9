"""
SQLAlchemy Models Package

Relational tier of the book cache:
- Book: canonical book row (UUID primary key)
- BookExternalId: provider id / ISBN → canonical id mapping
- BookEditionLink: primary → sibling edition links
- BookRawData: last raw provider payload per source

Import all models here so Alembic discovers them for migrations.
"""

from bookrec.models.book import Book
from bookrec.models.edition import ALTERNATE_EDITION, INGESTION_LINK_SOURCE, BookEditionLink
from bookrec.models.external_id import BookExternalId
from bookrec.models.raw_data import BookRawData

__all__ = [
    "Book",
    "BookExternalId",
    "BookEditionLink",
    "BookRawData",
    "ALTERNATE_EDITION",
    "INGESTION_LINK_SOURCE",
]
