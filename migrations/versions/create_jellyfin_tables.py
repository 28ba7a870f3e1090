"""Create jellyfin_config and jellyfin_libraries tables

Revision ID: create_jellyfin_tables
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = 'create_jellyfin_tables'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'jellyfin_config',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('server_url', sa.String(length=512), nullable=False),
        sa.Column('api_key', sa.String(length=255), nullable=False),
        sa.Column('server_name', sa.String(length=255), nullable=True),
        sa.Column('server_version', sa.String(length=50), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_table(
        'jellyfin_libraries',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('config_id', sa.Integer(), nullable=False),
        sa.Column('library_id', sa.String(length=100), nullable=False),
        sa.Column('library_name', sa.String(length=255), nullable=False),
        sa.Column('collection_type', sa.String(length=20), nullable=False),
        sa.Column('is_visible', sa.Boolean(), nullable=False),
        sa.Column('item_count', sa.Integer(), nullable=False),
        sa.Column('last_sync', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['config_id'], ['jellyfin_config.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('config_id', 'library_id', name='_config_library_uc')
    )
    op.create_index('ix_jellyfin_libraries_config_id', 'jellyfin_libraries', ['config_id'], unique=False)


def downgrade():
    op.drop_index('ix_jellyfin_libraries_config_id', table_name='jellyfin_libraries')
    op.drop_table('jellyfin_libraries')
    op.drop_table('jellyfin_config')
