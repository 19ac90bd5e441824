"""Initial migration - create the documents table backing the record store

Revision ID: 001_initial
Revises: 
Create Date: 2026-10-18

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # One row per document: organizations/{org}/members/{member}/{collection}/{doc_id}
    op.create_table(
        'documents',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('organization_id', sa.String(255), nullable=False),
        sa.Column('member_id', sa.String(255), nullable=False),
        sa.Column('collection', sa.String(64), nullable=False),
        sa.Column('doc_id', sa.String(255), nullable=False),
        sa.Column('data_json', sa.Text(), nullable=False, server_default='{}'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint(
            'organization_id', 'member_id', 'collection', 'doc_id',
            name='uq_documents_path',
        ),
    )

    op.create_index(
        'ix_documents_collection',
        'documents',
        ['organization_id', 'member_id', 'collection'],
    )


def downgrade() -> None:
    op.drop_index('ix_documents_collection', table_name='documents')
    op.drop_table('documents')
