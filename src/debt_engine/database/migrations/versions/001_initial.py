"""Initial migration - create payments, initial_debts and customer_debt_summary tables

Revision ID: 001_initial
Revises:
Create Date: 2025-05-02

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
    op.create_table(
        'payments',
        sa.Column('id', sa.String(200), primary_key=True),
        sa.Column('unique_code', sa.String(200), nullable=True, unique=True),
        sa.Column('counterparty_id', sa.String(64), nullable=False),
        sa.Column('counterparty_name', sa.String(255), nullable=True),
        sa.Column('payment_date', sa.Date(), nullable=False),
        sa.Column('amount', sa.Numeric(14, 2), nullable=False),
        sa.Column('post_balance', sa.Numeric(14, 2), nullable=True),
        sa.Column('source', sa.String(50), nullable=False, server_default='bank'),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('after_window', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('uploaded_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_payments_counterparty_id', 'payments', ['counterparty_id'])
    op.create_index('ix_payments_payment_date', 'payments', ['payment_date'])

    op.create_table(
        'initial_debts',
        sa.Column('counterparty_id', sa.String(64), primary_key=True),
        sa.Column('name', sa.String(255), nullable=True),
        sa.Column('debt', sa.Numeric(14, 2), nullable=False),
        sa.Column('debt_date', sa.Date(), nullable=True),
    )

    op.create_table(
        'customer_debt_summary',
        sa.Column('counterparty_id', sa.String(64), primary_key=True),
        sa.Column('counterparty_name', sa.String(255), nullable=False),
        sa.Column('total_sales', sa.Numeric(14, 2), nullable=False),
        sa.Column('sale_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_sale_date', sa.Date(), nullable=True),
        sa.Column('total_payments', sa.Numeric(14, 2), nullable=False),
        sa.Column('payment_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_payment_date', sa.Date(), nullable=True),
        sa.Column('total_cash_payments', sa.Numeric(14, 2), nullable=False),
        sa.Column('cash_payment_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('starting_debt', sa.Numeric(14, 2), nullable=False),
        sa.Column('starting_debt_date', sa.Date(), nullable=True),
        sa.Column('current_debt', sa.Numeric(14, 2), nullable=False),
        sa.Column('last_updated', sa.DateTime(), nullable=False),
        sa.Column('update_source', sa.String(50), nullable=True),
    )


def downgrade() -> None:
    op.drop_table('customer_debt_summary')
    op.drop_table('initial_debts')

    op.drop_index('ix_payments_payment_date', table_name='payments')
    op.drop_index('ix_payments_counterparty_id', table_name='payments')
    op.drop_table('payments')
