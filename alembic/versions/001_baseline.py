"""baseline schema - qa records, settings documents, notification outbox

Revision ID: 001_baseline
Revises:
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = '001_baseline'
down_revision = None
branch_labels = None
depends_on = None

JSONType = sa.JSON().with_variant(postgresql.JSONB(), 'postgresql')


def upgrade():
    # QA records: one row per (department, fiscal year, month)
    op.create_table('qa_records',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('department_id', sa.String(50), nullable=False),
        sa.Column('department_name', sa.String(255), nullable=False),
        sa.Column('fiscal_year', sa.Integer(), nullable=False),
        sa.Column('month', sa.String(50), nullable=False),
        sa.Column('data', JSONType, nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('department_id', 'fiscal_year', 'month', name='qa_unique_index')
    )
    op.create_index('ix_qa_records_department_id', 'qa_records', ['department_id'])
    op.create_index('ix_qa_records_fiscal_year', 'qa_records', ['fiscal_year'])
    op.create_index('ix_qa_records_year_department', 'qa_records', ['fiscal_year', 'department_id'])

    # Versioned settings documents
    op.create_table('app_documents',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('key', sa.String(100), nullable=False),
        sa.Column('data', JSONType, nullable=False),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_app_documents_key', 'app_documents', ['key'], unique=True)

    # Notification outbox
    op.create_table('notification_outbox',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('kind', sa.String(50), nullable=False),
        sa.Column('payload', JSONType, nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('processed_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_notification_outbox_status_created', 'notification_outbox', ['status', 'created_at'])


def downgrade():
    op.drop_index('ix_notification_outbox_status_created', table_name='notification_outbox')
    op.drop_table('notification_outbox')
    op.drop_index('ix_app_documents_key', table_name='app_documents')
    op.drop_table('app_documents')
    op.drop_index('ix_qa_records_year_department', table_name='qa_records')
    op.drop_index('ix_qa_records_fiscal_year', table_name='qa_records')
    op.drop_index('ix_qa_records_department_id', table_name='qa_records')
    op.drop_table('qa_records')
