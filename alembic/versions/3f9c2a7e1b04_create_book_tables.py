"""create_book_tables

Revision ID: 3f9c2a7e1b04
Revises:
Create Date: 2026-10-16 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f9c2a7e1b04'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Canonical books
    op.create_table(
        'books',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('title', sa.String(length=1000), nullable=False),
        sa.Column('subtitle', sa.String(length=1000), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('authors', sa.JSON(), nullable=False),
        sa.Column('categories', sa.JSON(), nullable=False),
        sa.Column('isbn10', sa.String(length=10), nullable=True),
        sa.Column('isbn13', sa.String(length=13), nullable=True),
        sa.Column('publisher', sa.String(length=500), nullable=True),
        sa.Column('published_date', sa.String(length=32), nullable=True),
        sa.Column('language', sa.String(length=16), nullable=True),
        sa.Column('page_count', sa.Integer(), nullable=True),
        sa.Column('average_rating', sa.Float(), nullable=True),
        sa.Column('ratings_count', sa.Integer(), nullable=True),
        sa.Column('info_link', sa.Text(), nullable=True),
        sa.Column('preview_link', sa.Text(), nullable=True),
        sa.Column('edition_number', sa.Integer(), nullable=True),
        sa.Column(
            'edition_group_key',
            sa.String(length=1000),
            nullable=True,
            comment='Normalized title plus first author shared by all editions'
        ),
        sa.Column('s3_image_path', sa.Text(), nullable=True),
        sa.Column('external_image_url', sa.Text(), nullable=True),
        sa.Column('cover_image_width', sa.Integer(), nullable=True),
        sa.Column('cover_image_height', sa.Integer(), nullable=True),
        sa.Column('is_cover_high_resolution', sa.Boolean(), nullable=True),
        sa.Column('cached_recommendation_ids', sa.JSON(), nullable=False),
        sa.Column('qualifiers', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_books_title'), 'books', ['title'], unique=False)
    op.create_index(op.f('ix_books_isbn10'), 'books', ['isbn10'], unique=False)
    op.create_index(op.f('ix_books_isbn13'), 'books', ['isbn13'], unique=False)
    op.create_index(op.f('ix_books_edition_group_key'), 'books', ['edition_group_key'], unique=False)

    # Provider id -> canonical id
    op.create_table(
        'book_external_ids',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('book_id', sa.String(length=36), nullable=False),
        sa.Column(
            'source',
            sa.String(length=32),
            nullable=False,
            comment='GOOGLE_BOOKS, OPEN_LIBRARY, ISBN13 or ISBN10'
        ),
        sa.Column('external_id', sa.String(length=255), nullable=False),
        sa.Column('provider_isbn10', sa.String(length=10), nullable=True),
        sa.Column('provider_isbn13', sa.String(length=13), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['book_id'], ['books.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('source', 'external_id', name='uq_book_external_ids_source_external_id')
    )
    op.create_index(op.f('ix_book_external_ids_book_id'), 'book_external_ids', ['book_id'], unique=False)

    # Edition links (primary -> sibling)
    op.create_table(
        'book_editions',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column(
            'book_id',
            sa.String(length=36),
            nullable=False,
            comment='Primary edition of the group'
        ),
        sa.Column('related_book_id', sa.String(length=36), nullable=False),
        sa.Column('link_source', sa.String(length=32), nullable=False),
        sa.Column('relationship_type', sa.String(length=32), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['book_id'], ['books.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['related_book_id'], ['books.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('book_id', 'related_book_id', name='uq_book_editions_pair')
    )
    op.create_index(op.f('ix_book_editions_book_id'), 'book_editions', ['book_id'], unique=False)
    op.create_index(op.f('ix_book_editions_related_book_id'), 'book_editions', ['related_book_id'], unique=False)

    # Raw provider payloads
    op.create_table(
        'book_raw_data',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('book_id', sa.String(length=36), nullable=False),
        sa.Column('source', sa.String(length=32), nullable=False),
        sa.Column('raw_json', sa.Text(), nullable=False),
        sa.Column('fetched_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['book_id'], ['books.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('book_id', 'source', name='uq_book_raw_data_book_source')
    )
    op.create_index(op.f('ix_book_raw_data_book_id'), 'book_raw_data', ['book_id'], unique=False)


def downgrade() -> None:
    op.drop_index(op.f('ix_book_raw_data_book_id'), table_name='book_raw_data')
    op.drop_table('book_raw_data')
    op.drop_index(op.f('ix_book_editions_related_book_id'), table_name='book_editions')
    op.drop_index(op.f('ix_book_editions_book_id'), table_name='book_editions')
    op.drop_table('book_editions')
    op.drop_index(op.f('ix_book_external_ids_book_id'), table_name='book_external_ids')
    op.drop_table('book_external_ids')
    op.drop_index(op.f('ix_books_edition_group_key'), table_name='books')
    op.drop_index(op.f('ix_books_isbn13'), table_name='books')
    op.drop_index(op.f('ix_books_isbn10'), table_name='books')
    op.drop_index(op.f('ix_books_title'), table_name='books')
    op.drop_table('books')
