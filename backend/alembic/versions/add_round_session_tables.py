"""add rounds and round_results tables for season sessions

Revision ID: add_round_session_tables
Revises:
Create Date: 2026-10-18

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers
revision = 'add_round_session_tables'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """rounds / round_results 테이블 생성 - 라운드 세션"""
    op.create_table(
        'rounds',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('round_number', sa.Integer, nullable=False, unique=True, comment='시즌 내 라운드 번호'),
        sa.Column('round_type', sa.String(20), nullable=False, server_default='regular'),
        sa.Column('status', sa.String(20), nullable=False, server_default='active'),
        sa.Column('buy_in_value', sa.Numeric(12, 2), nullable=True),
        sa.Column('rebuy_value', sa.Numeric(12, 2), nullable=True),
        sa.Column('knockout_value', sa.Numeric(12, 2), nullable=True),
        sa.Column('is_final_table', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('rebuy_deadline_passed', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('seated_player_ids', sa.JSON, nullable=False, comment='착석 플레이어 ID 목록'),
        sa.Column('is_started', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('current_level', sa.Integer, nullable=False, server_default='0'),
        sa.Column('is_paused', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('timer_started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('time_remaining_seconds', sa.Integer, nullable=False, server_default='0'),
        sa.Column('elimination_state', sa.JSON, nullable=True, comment='진행 중 탈락/리바이 상태'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_rounds_status', 'rounds', ['status'])
    op.create_index('ix_rounds_status_number', 'rounds', ['status', 'round_number'])

    op.create_table(
        'round_results',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('round_id', sa.Integer, sa.ForeignKey('rounds.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('player_id', sa.Integer, nullable=False, index=True),
        sa.Column('position', sa.Integer, nullable=False),
        sa.Column('points', sa.Integer, nullable=False, server_default='0'),
        sa.Column('rebuys', sa.Integer, nullable=False, server_default='0'),
        sa.Column('knockout_earnings', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('prize', sa.Numeric(12, 2), nullable=False, server_default='0'),
    )

    # 라운드당 플레이어 1행, 순위 중복 금지
    op.create_unique_constraint('uq_round_result_player', 'round_results', ['round_id', 'player_id'])
    op.create_unique_constraint('uq_round_result_position', 'round_results', ['round_id', 'position'])


def downgrade() -> None:
    """rounds / round_results 테이블 삭제"""
    op.drop_constraint('uq_round_result_position', 'round_results')
    op.drop_constraint('uq_round_result_player', 'round_results')
    op.drop_table('round_results')
    op.drop_index('ix_rounds_status_number')
    op.drop_index('ix_rounds_status')
    op.drop_table('rounds')
