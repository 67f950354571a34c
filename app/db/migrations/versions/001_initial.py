"""initial schema

Revision ID: 001_initial
Revises:
Create Date: 2026-10-18

Creates the companies, identity, question bank and PIR tables. Enumerated
columns are VARCHAR with CHECK constraints, matching app.db.models.
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001_initial'
down_revision = None
branch_labels = None
depends_on = None


def _enum(name, *values):
    return sa.Enum(*values, name=name, native_enum=False, create_constraint=True, length=32)


def upgrade() -> None:
    userrole = _enum('userrole', 'owner', 'admin', 'member')
    companytype = _enum('companytype', 'supplier', 'customer', 'both')
    relationshipstatus = _enum('relationshipstatus', 'pending', 'active', 'inactive', 'blocked')
    questiontype = _enum('questiontype', 'text', 'number', 'boolean', 'single_choice',
                         'multiple_choice', 'file', 'table')
    pirstatus = _enum('pirstatus', 'draft', 'sent', 'in_progress', 'submitted', 'resubmitted',
                      'in_review', 'flagged', 'approved', 'rejected', 'canceled')
    responsestatus = _enum('responsestatus', 'draft', 'submitted', 'approved', 'flagged')
    flagstatus = _enum('flagstatus', 'open', 'resolved')

    # Identity
    op.create_table('users',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('email', sa.String(255), unique=True, nullable=False, index=True),
        sa.Column('hashed_password', sa.String(255), nullable=True),
        sa.Column('is_active', sa.Boolean(), default=True),
        sa.Column('user_metadata', sa.JSON()),
        sa.Column('invitation_token', sa.String(100), unique=True, nullable=True, index=True),
        sa.Column('invited_at', sa.DateTime(timezone=True)),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('last_login', sa.DateTime(timezone=True)),
    )

    op.create_table('profiles',
        sa.Column('id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('email', sa.String(255)),
        sa.Column('first_name', sa.String(255)),
        sa.Column('last_name', sa.String(255)),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True)),
    )

    # Companies
    op.create_table('companies',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('role', companytype, nullable=False, server_default='both'),
        sa.Column('contact_name', sa.String(255)),
        sa.Column('contact_email', sa.String(255)),
        sa.Column('contact_phone', sa.String(50)),
        sa.Column('address', sa.Text()),
        sa.Column('city', sa.String(100)),
        sa.Column('state', sa.String(100)),
        sa.Column('country', sa.String(100)),
        sa.Column('zip_code', sa.String(20)),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True)),
    )

    op.create_table('company_users',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('company_id', sa.Integer(), sa.ForeignKey('companies.id'), nullable=False, index=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False, index=True),
        sa.Column('role', userrole, nullable=False, server_default='member'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True)),
        sa.UniqueConstraint('company_id', 'user_id', name='uq_company_user'),
    )

    op.create_table('company_relationships',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('customer_id', sa.Integer(), sa.ForeignKey('companies.id'), nullable=False, index=True),
        sa.Column('supplier_id', sa.Integer(), sa.ForeignKey('companies.id'), nullable=False, index=True),
        sa.Column('status', relationshipstatus, nullable=False, server_default='pending'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True)),
        sa.UniqueConstraint('customer_id', 'supplier_id', name='uq_relationship_pair'),
    )

    # Audit Logs
    op.create_table('audit_logs',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('timestamp', sa.DateTime(timezone=True), server_default=sa.func.now(), index=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('company_id', sa.Integer(), sa.ForeignKey('companies.id'), nullable=True),
        sa.Column('action', sa.String(100), nullable=False, index=True),
        sa.Column('entity_type', sa.String(100), index=True),
        sa.Column('entity_id', sa.Integer()),
        sa.Column('details', sa.JSON()),
        sa.Column('ip_address', sa.String(50)),
        sa.Index('ix_audit_logs_company_timestamp', 'company_id', 'timestamp'),
    )

    # Question bank
    op.create_table('sections',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text()),
        sa.Column('order_index', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True)),
    )

    op.create_table('subsections',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('section_id', sa.Integer(), sa.ForeignKey('sections.id'), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text()),
        sa.Column('order_index', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True)),
    )

    op.create_table('tags',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('name', sa.String(100), unique=True, nullable=False),
        sa.Column('description', sa.Text()),
        sa.Column('color', sa.String(20)),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True)),
    )

    op.create_table('questions',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('section_id', sa.Integer(), sa.ForeignKey('sections.id'), nullable=True),
        sa.Column('subsection_id', sa.Integer(), sa.ForeignKey('subsections.id'), nullable=True),
        sa.Column('text', sa.Text(), nullable=False),
        sa.Column('description', sa.Text()),
        sa.Column('type', questiontype, nullable=False, server_default='text'),
        sa.Column('required', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('options', sa.JSON()),
        sa.Column('table_columns', sa.JSON()),
        sa.Column('order_index', sa.Integer()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True)),
    )

    op.create_table('question_tags',
        sa.Column('question_id', sa.Integer(), sa.ForeignKey('questions.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('tag_id', sa.Integer(), sa.ForeignKey('tags.id', ondelete='CASCADE'), primary_key=True),
    )

    # Products & PIRs
    op.create_table('products',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('supplier_id', sa.Integer(), sa.ForeignKey('companies.id'), nullable=False, index=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True)),
    )

    op.create_table('pir_requests',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('customer_id', sa.Integer(), sa.ForeignKey('companies.id'), nullable=False, index=True),
        sa.Column('supplier_company_id', sa.Integer(), sa.ForeignKey('companies.id'), nullable=False, index=True),
        sa.Column('product_id', sa.Integer(), sa.ForeignKey('products.id'), nullable=True),
        sa.Column('suggested_product_name', sa.String(255)),
        sa.Column('title', sa.String(500)),
        sa.Column('description', sa.Text()),
        sa.Column('status', pirstatus, nullable=False, server_default='draft', index=True),
        sa.Column('due_date', sa.DateTime(timezone=True)),
        sa.Column('created_by', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint('customer_id <> supplier_company_id', name='ck_pir_distinct_parties'),
    )

    op.create_table('pir_tags',
        sa.Column('pir_id', sa.Integer(), sa.ForeignKey('pir_requests.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('tag_id', sa.Integer(), sa.ForeignKey('tags.id', ondelete='CASCADE'), primary_key=True),
    )

    op.create_table('pir_responses',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('pir_id', sa.Integer(), sa.ForeignKey('pir_requests.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('question_id', sa.Integer(), sa.ForeignKey('questions.id'), nullable=False),
        sa.Column('answer', sa.JSON()),
        sa.Column('status', responsestatus, nullable=False, server_default='draft'),
        sa.Column('submitted_at', sa.DateTime(timezone=True)),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True)),
        sa.UniqueConstraint('pir_id', 'question_id', name='uq_response_pir_question'),
    )

    op.create_table('response_flags',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('response_id', sa.Integer(), sa.ForeignKey('pir_responses.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('status', flagstatus, nullable=False, server_default='open'),
        sa.Column('created_by', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('resolved_at', sa.DateTime(timezone=True)),
    )

    op.create_table('response_comments',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('response_id', sa.Integer(), sa.ForeignKey('pir_responses.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('author_name', sa.String(255)),
        sa.Column('text', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )


def downgrade() -> None:
    # Drop tables in reverse order (respecting foreign keys)
    op.drop_table('response_comments')
    op.drop_table('response_flags')
    op.drop_table('pir_responses')
    op.drop_table('pir_tags')
    op.drop_table('pir_requests')
    op.drop_table('products')
    op.drop_table('question_tags')
    op.drop_table('questions')
    op.drop_table('tags')
    op.drop_table('subsections')
    op.drop_table('sections')
    op.drop_table('audit_logs')
    op.drop_table('company_relationships')
    op.drop_table('company_users')
    op.drop_table('companies')
    op.drop_table('profiles')
    op.drop_table('users')
