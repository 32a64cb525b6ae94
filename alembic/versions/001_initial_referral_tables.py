"""Initial referral tables: admins, referrers, codes, attributions, pending visits

Revision ID: 001
Revises:
Create Date: 2026-01-12 10:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table('admins',
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('notes', sa.String(500), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('NOW()')),
        sa.PrimaryKeyConstraint('email')
    )

    op.create_table('referrers',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('user_id', sa.String(255), nullable=False),
        sa.Column('is_approved', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('can_send_notifications', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('approved_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.text('NOW()')),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_referrers_email', 'referrers', ['email'], unique=True)
    op.create_index('ix_referrers_user_id', 'referrers', ['user_id'], unique=True)

    op.create_table('referral_codes',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('code', sa.String(20), nullable=False),
        sa.Column('referrer_id', sa.String(36), nullable=False),
        sa.Column('label', sa.String(100), nullable=True),
        sa.Column('is_approved', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('expires_at', sa.DateTime(), nullable=True),
        sa.Column('usage_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('approved_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['referrer_id'], ['referrers.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_referral_codes_code', 'referral_codes', ['code'])
    op.create_index('ix_referral_codes_referrer_id', 'referral_codes', ['referrer_id'])
    # Unapproved duplicates may coexist; approved strings are unique
    op.create_index(
        'uq_referral_codes_approved_code', 'referral_codes', ['code'],
        unique=True, postgresql_where=sa.text('is_approved = true')
    )

    op.create_table('user_referrals',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('user_email', sa.String(255), nullable=False),
        sa.Column('user_id', sa.String(255), nullable=False),
        sa.Column('wallet_address', sa.String(255), nullable=True),
        sa.Column('code_used', sa.String(20), nullable=False),
        sa.Column('referrer_id', sa.String(36), nullable=False),
        sa.Column('custom_tag', sa.String(255), nullable=True),
        sa.Column('source', sa.String(255), nullable=True),
        sa.Column('utm_source', sa.String(255), nullable=True),
        sa.Column('utm_medium', sa.String(255), nullable=True),
        sa.Column('utm_campaign', sa.String(255), nullable=True),
        sa.Column('full_params', postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column('referred_at', sa.DateTime(), nullable=False),
        sa.Column('converted_at', sa.DateTime(), nullable=False, server_default=sa.text('NOW()')),
        sa.ForeignKeyConstraint(['referrer_id'], ['referrers.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_email', name='uq_user_referrals_user_email'),
        sa.UniqueConstraint('user_id', name='uq_user_referrals_user_id')
    )
    op.create_index('ix_user_referrals_code_used', 'user_referrals', ['code_used'])
    op.create_index('ix_user_referrals_referrer_id', 'user_referrals', ['referrer_id'])

    op.create_table('pending_referral_visits',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('referral_code', sa.String(20), nullable=False),
        sa.Column('ip_address', sa.String(64), nullable=False),
        sa.Column('user_agent', sa.String(512), nullable=False),
        sa.Column('screen_resolution', sa.String(20), nullable=True),
        sa.Column('custom_tag', sa.String(255), nullable=True),
        sa.Column('source', sa.String(255), nullable=True),
        sa.Column('full_params', postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_pending_referral_visits_expires_at', 'pending_referral_visits', ['expires_at'])
    op.create_index('ix_pending_referral_visits_ip_expires', 'pending_referral_visits', ['ip_address', 'expires_at'])


def downgrade() -> None:
    op.drop_index('ix_pending_referral_visits_ip_expires', table_name='pending_referral_visits')
    op.drop_index('ix_pending_referral_visits_expires_at', table_name='pending_referral_visits')
    op.drop_table('pending_referral_visits')

    op.drop_index('ix_user_referrals_referrer_id', table_name='user_referrals')
    op.drop_index('ix_user_referrals_code_used', table_name='user_referrals')
    op.drop_table('user_referrals')

    op.drop_index('uq_referral_codes_approved_code', table_name='referral_codes')
    op.drop_index('ix_referral_codes_referrer_id', table_name='referral_codes')
    op.drop_index('ix_referral_codes_code', table_name='referral_codes')
    op.drop_table('referral_codes')

    op.drop_index('ix_referrers_user_id', table_name='referrers')
    op.drop_index('ix_referrers_email', table_name='referrers')
    op.drop_table('referrers')

    op.drop_table('admins')
