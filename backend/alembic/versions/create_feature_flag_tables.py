"""create feature flag tables

Revision ID: create_feature_flag_tables
Revises:
Create Date: 2026-10-18 10:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = 'create_feature_flag_tables'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

def upgrade() -> None:
    """Create flag, environment, target, segment catalog and audit tables."""
    op.create_table(
        'feature_flags',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('key', sa.String(128), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text, nullable=True),
        sa.Column('type', sa.String(16), nullable=False, server_default='BOOLEAN'),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.UniqueConstraint('key', name='uq_feature_flags_key'),
        sa.Index('ix_feature_flags_key', 'key'),
        sa.Index('ix_feature_flags_active_created', 'created_at', postgresql_where=sa.text('deleted_at IS NULL'))
    )

    op.create_table(
        'feature_flag_environments',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('flag_id', sa.Integer, sa.ForeignKey('feature_flags.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('environment', sa.String(16), nullable=False),
        sa.Column('enabled', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('rollout_percentage', sa.Integer, nullable=True),
        sa.Column('force_enabled', sa.Boolean, nullable=True),
        sa.Column('force_disabled', sa.Boolean, nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.UniqueConstraint('flag_id', 'environment', name='uq_feature_flag_environments_flag_id'),
        sa.CheckConstraint(
            'rollout_percentage IS NULL OR (rollout_percentage >= 0 AND rollout_percentage <= 100)',
            name='ck_feature_flag_environments_rollout_percentage_range'
        ),
        sa.CheckConstraint(
            "environment IN ('development', 'staging', 'production')",
            name='ck_feature_flag_environments_environment_name'
        )
    )

    op.create_table(
        'feature_flag_segment_targets',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('flag_environment_id', sa.Integer, sa.ForeignKey('feature_flag_environments.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('segment', sa.String(128), nullable=False, index=True),
        sa.Column('include', sa.Boolean, nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.UniqueConstraint('flag_environment_id', 'segment', name='uq_feature_flag_segment_targets_flag_environment_id')
    )

    op.create_table(
        'feature_flag_user_targets',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('flag_environment_id', sa.Integer, sa.ForeignKey('feature_flag_environments.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('user_id', sa.String(255), nullable=False),
        sa.Column('include', sa.Boolean, nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.UniqueConstraint('flag_environment_id', 'user_id', name='uq_feature_flag_user_targets_flag_environment_id')
    )

    op.create_table(
        'feature_segment_definitions',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('name', sa.String(128), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.UniqueConstraint('name', name='uq_feature_segment_definitions_name')
    )

    op.create_table(
        'feature_flag_audit_logs',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('flag_id', sa.Integer, sa.ForeignKey('feature_flags.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('timestamp', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP'), index=True),
        sa.Column('actor', sa.String(255), nullable=False),
        sa.Column('action', sa.String(16), nullable=False),
        sa.Column('before', postgresql.JSONB, nullable=True),
        sa.Column('after', postgresql.JSONB, nullable=True),
        sa.Index('ix_feature_flag_audit_logs_flag_id_timestamp', 'flag_id', 'timestamp', postgresql_ops={'timestamp': 'DESC'})
    )

    # Add comments
    op.execute("""
        COMMENT ON TABLE feature_flags IS 'Feature flags; deleted_at marks a soft-deleted, revivable flag';
        COMMENT ON COLUMN feature_flag_environments.enabled IS 'Per-environment master switch';
        COMMENT ON COLUMN feature_flag_environments.rollout_percentage IS 'Share of users in the rollout, NULL disables the rule';
        COMMENT ON TABLE feature_flag_audit_logs IS 'Append-only before/after snapshots of flag mutations';
        COMMENT ON TABLE feature_segment_definitions IS 'Catalog of known segment names, not used by evaluation';
    """)

def downgrade() -> None:
    """Drop feature flag tables."""
    op.drop_table('feature_flag_audit_logs')
    op.drop_table('feature_segment_definitions')
    op.drop_table('feature_flag_user_targets')
    op.drop_table('feature_flag_segment_targets')
    op.drop_table('feature_flag_environments')
    op.drop_table('feature_flags')
