"""Create attribution tables (touches, conversions, touch_conversions, attribution_results).

Revision ID: 20260301_000001
Revises:
Create Date: 2026-03-01 12:00:00.000000

WHAT:
    Creates the attribution row-sets:
    - touches: Marketing touches per visitor, channel label stored at insert
    - conversions: Valuable visitor actions, with the batch claim column
    - touch_conversions: Touches that were in scope when a conversion was scored
    - attribution_results: Per-model credit for each (conversion, touch)

WHY:
    touches(visitor_id, touched_at) serves the windowed lookup.
    attribution_results(conversion_id, model) serves per-model replacement
    and the "has any result" check of the batch sweep.

REFERENCES:
    - backend/touchcredit/models.py
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20260301_000001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # =========================================================================
    # touches
    # =========================================================================
    op.create_table(
        'touches',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('visitor_id', sa.String(64), nullable=False),
        sa.Column('session_id', sa.String(64), nullable=True),
        sa.Column('touch_type', sa.String(50), nullable=False, server_default='pageview'),
        sa.Column('channel', sa.String(100), nullable=True),
        sa.Column('source', sa.String(100), nullable=True),
        sa.Column('medium', sa.String(100), nullable=True),
        sa.Column('campaign', sa.String(255), nullable=True),
        sa.Column('content', sa.String(255), nullable=True),
        sa.Column('term', sa.String(255), nullable=True),
        sa.Column('landing_page', sa.Text(), nullable=True),
        sa.Column('referrer', sa.Text(), nullable=True),
        sa.Column('touched_at', sa.DateTime(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_touches_visitor_time', 'touches', ['visitor_id', 'touched_at'])
    op.create_index('ix_touches_channel', 'touches', ['channel'])

    # =========================================================================
    # conversions
    # =========================================================================
    op.create_table(
        'conversions',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('visitor_id', sa.String(64), nullable=False),
        sa.Column('conversion_type', sa.String(50), nullable=False),
        sa.Column('conversion_value', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('source', sa.String(50), nullable=True),
        sa.Column('source_id', sa.String(100), nullable=True),
        sa.Column('customer_email', sa.String(255), nullable=True),
        sa.Column('customer_name', sa.String(255), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('converted_at', sa.DateTime(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('attribution_claimed_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_conversions_visitor_id', 'conversions', ['visitor_id'])
    op.create_index('ix_conversions_conversion_type', 'conversions', ['conversion_type'])
    op.create_index('ix_conversions_source', 'conversions', ['source'])
    op.create_index('ix_conversions_converted_at', 'conversions', ['converted_at'])

    # =========================================================================
    # touch_conversions
    # =========================================================================
    op.create_table(
        'touch_conversions',
        sa.Column('conversion_id', sa.Integer(),
                  sa.ForeignKey('conversions.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('touch_id', sa.Integer(),
                  sa.ForeignKey('touches.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('linked_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_touch_conversions_touch_id', 'touch_conversions', ['touch_id'])

    # =========================================================================
    # attribution_results
    # =========================================================================
    op.create_table(
        'attribution_results',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('conversion_id', sa.Integer(),
                  sa.ForeignKey('conversions.id', ondelete='CASCADE'), nullable=False),
        sa.Column('touch_id', sa.Integer(),
                  sa.ForeignKey('touches.id', ondelete='CASCADE'), nullable=False),
        sa.Column('model', sa.String(50), nullable=False),
        sa.Column('credit', sa.Float(), nullable=False, server_default='0'),
        sa.Column('calculated_at', sa.DateTime(), nullable=True),
        sa.UniqueConstraint('conversion_id', 'touch_id', 'model', name='uq_attribution_result'),
    )
    op.create_index(
        'ix_attribution_results_conversion_model',
        'attribution_results',
        ['conversion_id', 'model'],
    )
    op.create_index('ix_attribution_results_touch_id', 'attribution_results', ['touch_id'])
    op.create_index('ix_attribution_results_model', 'attribution_results', ['model'])


def downgrade() -> None:
    # Drop tables in reverse order (respect foreign keys)
    op.drop_table('attribution_results')
    op.drop_table('touch_conversions')
    op.drop_table('conversions')
    op.drop_table('touches')
