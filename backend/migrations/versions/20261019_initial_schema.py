"""Initial schema: operators, catalog, price lists, cash sessions, sales,
credit notes, fiscal settings, subscription state and the e-mail queue

Revision ID: 20261019_initial
Revises:
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261019_initial'
down_revision = None
branch_labels = None
depends_on = None


def _fiscal_columns():
    """Columns shared by every document that goes to the tax authority."""
    return [
        sa.Column('fiscal_status', sa.String(length=16), nullable=True),
        sa.Column('access_key', sa.String(length=49), nullable=True),
        sa.Column('authorization_code', sa.String(length=64), nullable=True),
        sa.Column('authorized_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('legal_number', sa.String(length=17), nullable=True),
        sa.Column('rejection_reason', sa.String(length=512), nullable=True),
        sa.Column('fiscal_environment', sa.String(length=16), nullable=True),
        sa.Column('signed_payload', sa.Text(), nullable=True),
        sa.Column('notification_sent', sa.Boolean(), nullable=False, server_default='0'),
    ]


def upgrade():
    # ==========================================================================
    # 1. OPERATORS
    # ==========================================================================
    op.create_table('users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('username', sa.String(length=64), nullable=False),
        sa.Column('display_name', sa.String(length=128), nullable=False),
        sa.Column('password_hash', sa.String(length=255), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('is_admin', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('last_login_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_users_username', 'users', ['username'], unique=True)
    op.create_index('ix_users_is_active', 'users', ['is_active'])

    op.create_table('session_tokens',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('token_hash', sa.String(length=255), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('last_used_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('is_revoked', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('revoked_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('revoked_reason', sa.String(length=255), nullable=True),
        sa.Column('user_agent', sa.String(length=512), nullable=True),
        sa.Column('ip_address', sa.String(length=45), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_session_tokens_user_id', 'session_tokens', ['user_id'])
    op.create_index('ix_session_tokens_token_hash', 'session_tokens', ['token_hash'], unique=True)
    op.create_index('ix_session_tokens_expires_at', 'session_tokens', ['expires_at'])
    op.create_index('ix_session_tokens_is_revoked', 'session_tokens', ['is_revoked'])
    op.create_index('ix_session_tokens_user_active', 'session_tokens', ['user_id', 'is_revoked'])

    # ==========================================================================
    # 2. CATALOG AND PRICE LISTS
    # ==========================================================================
    op.create_table('products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sku', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('price_cents', sa.Integer(), nullable=False),
        sa.Column('tax_rate_bps', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_service', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_products_sku', 'products', ['sku'], unique=True)
    op.create_index('ix_products_is_active', 'products', ['is_active'])

    op.create_table('price_lists',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('description', sa.String(length=255), nullable=True),
        sa.Column('is_default', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_price_lists_is_default', 'price_lists', ['is_default'])

    op.create_table('product_prices',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('price_list_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('price_cents', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['price_list_id'], ['price_lists.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('price_list_id', 'product_id', name='uq_product_prices_list_product'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_product_prices_price_list_id', 'product_prices', ['price_list_id'])
    op.create_index('ix_product_prices_product_id', 'product_prices', ['product_id'])

    op.create_table('customers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('id_type', sa.String(length=16), nullable=False, server_default='FINAL_CONSUMER'),
        sa.Column('id_number', sa.String(length=20), nullable=True),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('phone', sa.String(length=32), nullable=True),
        sa.Column('address', sa.String(length=255), nullable=True),
        sa.Column('price_list_id', sa.Integer(), nullable=True),
        sa.Column('is_default', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['price_list_id'], ['price_lists.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_customers_id_number', 'customers', ['id_number'])
    op.create_index('ix_customers_price_list_id', 'customers', ['price_list_id'])

    # ==========================================================================
    # 3. CASH SESSIONS AND EXPENSES
    # ==========================================================================
    op.create_table('cash_sessions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='OPEN'),
        sa.Column('opening_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_sales_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('sales_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('cash_sales_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('expenses_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('credit_notes_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('expected_cents', sa.Integer(), nullable=True),
        sa.Column('counted_cents', sa.Integer(), nullable=True),
        sa.Column('difference_cents', sa.Integer(), nullable=True),
        sa.Column('note', sa.Text(), nullable=True),
        sa.Column('opened_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('closed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_cash_sessions_user_id', 'cash_sessions', ['user_id'])
    op.create_index('ix_cash_sessions_status', 'cash_sessions', ['status'])
    op.create_index('ix_cash_sessions_opened_at', 'cash_sessions', ['opened_at'])
    op.create_index(
        'uq_cash_sessions_user_open', 'cash_sessions', ['user_id'],
        unique=True,
        sqlite_where=sa.text("status = 'OPEN'"),
        postgresql_where=sa.text("status = 'OPEN'"),
    )

    op.create_table('expenses',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('cash_session_id', sa.Integer(), nullable=True),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('description', sa.String(length=255), nullable=False),
        sa.Column('category', sa.String(length=64), nullable=True),
        sa.Column('amount_cents', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(['cash_session_id'], ['cash_sessions.id']),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_expenses_cash_session_id', 'expenses', ['cash_session_id'])
    op.create_index('ix_expenses_user_id', 'expenses', ['user_id'])
    op.create_index('ix_expenses_created_at', 'expenses', ['created_at'])

    # ==========================================================================
    # 4. SALES AND CREDIT NOTES
    # ==========================================================================
    op.create_table('sales',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('document_number', sa.String(length=32), nullable=False),
        sa.Column('document_kind', sa.String(length=16), nullable=False, server_default='RECEIPT'),
        sa.Column('customer_id', sa.Integer(), nullable=True),
        sa.Column('created_by_user_id', sa.Integer(), nullable=False),
        sa.Column('cash_session_id', sa.Integer(), nullable=True),
        sa.Column('subtotal_untaxed_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('subtotal_taxed_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('discount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('tax_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('payment_method', sa.String(length=16), nullable=False, server_default='CASH'),
        sa.Column('amount_tendered_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('change_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('note', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        *_fiscal_columns(),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id']),
        sa.ForeignKeyConstraint(['created_by_user_id'], ['users.id']),
        sa.ForeignKeyConstraint(['cash_session_id'], ['cash_sessions.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('access_key'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_sales_document_number', 'sales', ['document_number'], unique=True)
    op.create_index('ix_sales_customer_id', 'sales', ['customer_id'])
    op.create_index('ix_sales_created_by_user_id', 'sales', ['created_by_user_id'])
    op.create_index('ix_sales_cash_session_id', 'sales', ['cash_session_id'])
    op.create_index('ix_sales_created_at', 'sales', ['created_at'])
    op.create_index('ix_sales_fiscal_status', 'sales', ['fiscal_status'])
    op.create_index('ix_sales_kind_fiscal_status', 'sales', ['document_kind', 'fiscal_status'])

    op.create_table('sale_lines',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sale_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price_cents', sa.Integer(), nullable=False),
        sa.Column('discount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('tax_rate_bps', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('subtotal_cents', sa.Integer(), nullable=False),
        sa.Column('tax_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(['sale_id'], ['sales.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_sale_lines_sale_id', 'sale_lines', ['sale_id'])

    op.create_table('credit_notes',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('document_number', sa.String(length=32), nullable=False),
        sa.Column('sale_id', sa.Integer(), nullable=False),
        sa.Column('customer_id', sa.Integer(), nullable=True),
        sa.Column('created_by_user_id', sa.Integer(), nullable=False),
        sa.Column('cash_session_id', sa.Integer(), nullable=True),
        sa.Column('reason', sa.String(length=255), nullable=False),
        sa.Column('subtotal_untaxed_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('subtotal_taxed_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('tax_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        *_fiscal_columns(),
        sa.ForeignKeyConstraint(['sale_id'], ['sales.id']),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id']),
        sa.ForeignKeyConstraint(['created_by_user_id'], ['users.id']),
        sa.ForeignKeyConstraint(['cash_session_id'], ['cash_sessions.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('sale_id', name='uq_credit_notes_sale'),
        sa.UniqueConstraint('access_key'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_credit_notes_document_number', 'credit_notes', ['document_number'], unique=True)
    op.create_index('ix_credit_notes_customer_id', 'credit_notes', ['customer_id'])
    op.create_index('ix_credit_notes_created_by_user_id', 'credit_notes', ['created_by_user_id'])
    op.create_index('ix_credit_notes_cash_session_id', 'credit_notes', ['cash_session_id'])
    op.create_index('ix_credit_notes_created_at', 'credit_notes', ['created_at'])
    op.create_index('ix_credit_notes_fiscal_status', 'credit_notes', ['fiscal_status'])

    op.create_table('credit_note_lines',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('credit_note_id', sa.Integer(), nullable=False),
        sa.Column('sale_line_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price_cents', sa.Integer(), nullable=False),
        sa.Column('discount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('tax_rate_bps', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('subtotal_cents', sa.Integer(), nullable=False),
        sa.Column('tax_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.ForeignKeyConstraint(['credit_note_id'], ['credit_notes.id']),
        sa.ForeignKeyConstraint(['sale_line_id'], ['sale_lines.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_credit_note_lines_credit_note_id', 'credit_note_lines', ['credit_note_id'])
    op.create_index('ix_credit_note_lines_sale_line_id', 'credit_note_lines', ['sale_line_id'])

    # ==========================================================================
    # 5. FISCAL SETTINGS, CERTIFICATE, SUBSCRIPTION, SEQUENCES
    # ==========================================================================
    op.create_table('fiscal_settings',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('business_tax_id', sa.String(length=13), nullable=False, server_default='9999999999999'),
        sa.Column('legal_name', sa.String(length=255), nullable=False, server_default=''),
        sa.Column('trade_name', sa.String(length=255), nullable=True),
        sa.Column('address', sa.String(length=255), nullable=True),
        sa.Column('establishment_code', sa.String(length=3), nullable=False, server_default='001'),
        sa.Column('emission_point', sa.String(length=3), nullable=False, server_default='001'),
        sa.Column('tax_regime', sa.String(length=64), nullable=True),
        sa.Column('environment', sa.String(length=16), nullable=False, server_default='test'),
        sa.Column('environment_confirmed', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('environment_confirmed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )

    op.create_table('signing_certificates',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('filename', sa.String(length=255), nullable=False),
        sa.Column('content', sa.LargeBinary(), nullable=False),
        sa.Column('password', sa.String(length=255), nullable=False),
        sa.Column('loaded_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )

    op.create_table('subscription_state',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('is_authorized', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('plan_kind', sa.String(length=32), nullable=False, server_default='TRIAL'),
        sa.Column('expires_on', sa.Date(), nullable=True),
        sa.Column('remaining_documents', sa.Integer(), nullable=True),
        sa.Column('free_invoices_used', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('free_invoice_allowance', sa.Integer(), nullable=True),
        sa.Column('message', sa.String(length=255), nullable=True),
        sa.Column('last_validated_on', sa.Date(), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )

    op.create_table('document_sequences',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sequence_key', sa.String(length=64), nullable=False),
        sa.Column('next_number', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_document_sequences_sequence_key', 'document_sequences', ['sequence_key'], unique=True)

    # ==========================================================================
    # 6. DEFERRED E-MAIL QUEUE
    # ==========================================================================
    op.create_table('queued_notifications',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('document_type', sa.String(length=16), nullable=False),
        sa.Column('document_id', sa.Integer(), nullable=False),
        sa.Column('address', sa.String(length=255), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='PENDING'),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_error', sa.String(length=512), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('last_attempt_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('document_type', 'document_id', name='uq_queued_notifications_document'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_queued_notifications_status_created', 'queued_notifications', ['status', 'created_at'])


def downgrade():
    op.drop_table('queued_notifications')
    op.drop_table('document_sequences')
    op.drop_table('subscription_state')
    op.drop_table('signing_certificates')
    op.drop_table('fiscal_settings')
    op.drop_table('credit_note_lines')
    op.drop_table('credit_notes')
    op.drop_table('sale_lines')
    op.drop_table('sales')
    op.drop_table('expenses')
    op.drop_table('cash_sessions')
    op.drop_table('customers')
    op.drop_table('product_prices')
    op.drop_table('price_lists')
    op.drop_table('products')
    op.drop_table('session_tokens')
    op.drop_table('users')
