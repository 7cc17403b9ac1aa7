"""Create SSO provider and user tables

Revision ID: 001
Revises:
Create Date: 2026-10-16

Providers are routed to by email domain; at most one active provider per
domain is enforced with a partial unique index.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'sso_providers',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('type', sa.String(20), nullable=False),
        sa.Column('domain', sa.String(255), nullable=False),
        sa.Column('sso_url', sa.String(500), nullable=False),

        # OAuth2 / OIDC
        sa.Column('client_id', sa.String(255), nullable=True),
        sa.Column('client_secret', sa.String(1000), nullable=True),  # Fernet token
        sa.Column('token_url', sa.String(500), nullable=True),
        sa.Column('userinfo_url', sa.String(500), nullable=True),
        sa.Column('scopes', sa.String(255), nullable=False, server_default='openid email profile'),

        # SAML
        sa.Column('certificate', sa.Text(), nullable=True),
        sa.Column('slo_url', sa.String(500), nullable=True),

        # User provisioning
        sa.Column('auto_provision', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('default_role', sa.String(20), nullable=False, server_default='USER'),
        sa.Column('default_tier', sa.String(30), nullable=False, server_default='FREE'),

        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_sso_providers_domain', 'sso_providers', ['domain'], unique=False)
    op.create_index(
        'uq_sso_providers_active_domain',
        'sso_providers',
        ['domain'],
        unique=True,
        postgresql_where=sa.text('is_active'),
        sqlite_where=sa.text('is_active = 1'),
    )

    op.create_table(
        'users',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('first_name', sa.String(100), nullable=False),
        sa.Column('last_name', sa.String(100), nullable=False),
        sa.Column('hashed_password', sa.String(255), nullable=False),
        sa.Column('license_number', sa.String(100), nullable=True),
        sa.Column('role', sa.String(20), nullable=False, server_default='USER'),
        sa.Column('subscription_tier', sa.String(30), nullable=False, server_default='FREE'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_login_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('sso_provider_id', sa.String(36), nullable=True),
        sa.ForeignKeyConstraint(['sso_provider_id'], ['sso_providers.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)
    op.create_index('uq_users_email_lower', 'users', [sa.text('lower(email)')], unique=True)
    op.create_index('ix_users_sso_provider_id', 'users', ['sso_provider_id'], unique=False)


def downgrade() -> None:
    op.drop_index('ix_users_sso_provider_id', table_name='users')
    op.drop_index('uq_users_email_lower', table_name='users')
    op.drop_index('ix_users_email', table_name='users')
    op.drop_table('users')
    op.drop_index('uq_sso_providers_active_domain', table_name='sso_providers')
    op.drop_index('ix_sso_providers_domain', table_name='sso_providers')
    op.drop_table('sso_providers')
