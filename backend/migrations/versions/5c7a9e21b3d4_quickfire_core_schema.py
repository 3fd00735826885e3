"""quickfire core schema: sessions, powerups, leaderboards

Revision ID: 5c7a9e21b3d4
Revises:
Create Date: 2026-10-18 00:00:00
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '5c7a9e21b3d4'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'user',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('username', sa.String(64), nullable=False),
        sa.Column('password_hash', sa.String(256), nullable=False),
        sa.Column('country', sa.String(2), nullable=True),
    )
    op.create_index('ix_user_username', 'user', ['username'], unique=True)
    op.create_index('ix_user_country', 'user', ['country'])

    op.create_table(
        'quiz_session',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=False),
        sa.Column('artist_id', sa.String(64), nullable=False),
        sa.Column('status', sa.String(16), nullable=False),
        sa.Column('base_duration_sec', sa.Integer(), nullable=False),
        sa.Column('countdown_sec', sa.Integer(), nullable=False),
        sa.Column('bonus_seconds', sa.Integer(), nullable=False),
        sa.Column('penalty_seconds', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.Float(), nullable=False),
        sa.Column('clock_started_at', sa.Float(), nullable=False),
        sa.Column('frozen_seconds', sa.Float(), nullable=False),
        sa.Column('pause_started_at', sa.Float(), nullable=True),
        sa.Column('pause_until', sa.Float(), nullable=True),
        sa.Column('last_activity_at', sa.Float(), nullable=False),
        sa.Column('question_served_at', sa.Float(), nullable=True),
        sa.Column('last_answer_at', sa.Float(), nullable=True),
        sa.Column('completed_at', sa.Float(), nullable=True),
        sa.Column('base_points', sa.Integer(), nullable=False),
        sa.Column('listening_points', sa.Integer(), nullable=False),
        sa.Column('streak_points', sa.Integer(), nullable=False),
        sa.Column('multiplier_points', sa.Integer(), nullable=False),
        sa.Column('penalty_points', sa.Integer(), nullable=False),
        sa.Column('current_streak', sa.Integer(), nullable=False),
        sa.Column('longest_streak', sa.Integer(), nullable=False),
        sa.Column('correct_count', sa.Integer(), nullable=False),
        sa.Column('wrong_count', sa.Integer(), nullable=False),
        sa.Column('skipped_count', sa.Integer(), nullable=False),
        sa.Column('listening_hours', sa.Float(), nullable=False),
        sa.Column('question_pool', sa.Text(), nullable=False),
        sa.Column('question_queue', sa.Text(), nullable=False),
        sa.Column('current_question_id', sa.String(64), nullable=True),
        sa.Column('removed_options', sa.Text(), nullable=True),
        sa.Column('active_multiplier', sa.Float(), nullable=True),
        sa.Column('multiplier_scope', sa.String(16), nullable=True),
        sa.Column('shield_charges', sa.Integer(), nullable=False),
        sa.Column('final_score', sa.Integer(), nullable=True),
        sa.Column('completion_reason', sa.String(32), nullable=True),
        sa.Column('review_status', sa.String(16), nullable=False),
        sa.Column('timing_anomalies', sa.Integer(), nullable=False),
    )
    op.create_index('ix_quiz_session_user_id', 'quiz_session', ['user_id'])
    op.create_index('ix_quiz_session_artist_id', 'quiz_session', ['artist_id'])
    op.create_index('ix_quiz_session_status', 'quiz_session', ['status'])
    op.create_index('ix_quiz_session_completed_at', 'quiz_session', ['completed_at'])
    op.create_index('ix_quiz_session_review_status', 'quiz_session', ['review_status'])

    op.create_table(
        'quiz_answer',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('session_id', sa.Integer(), sa.ForeignKey('quiz_session.id'), nullable=False),
        sa.Column('question_id', sa.String(64), nullable=False),
        sa.Column('selected_choice', sa.String(256), nullable=True),
        sa.Column('is_correct', sa.Boolean(), nullable=False),
        sa.Column('skipped', sa.Boolean(), nullable=False),
        sa.Column('difficulty', sa.String(16), nullable=False),
        sa.Column('base_points', sa.Integer(), nullable=False),
        sa.Column('listening_bonus', sa.Integer(), nullable=False),
        sa.Column('streak_bonus', sa.Integer(), nullable=False),
        sa.Column('multiplier_bonus', sa.Integer(), nullable=False),
        sa.Column('penalty', sa.Integer(), nullable=False),
        sa.Column('net_points', sa.Integer(), nullable=False),
        sa.Column('time_penalty_sec', sa.Integer(), nullable=False),
        sa.Column('time_taken_ms', sa.Integer(), nullable=False),
        sa.Column('streak_at_answer', sa.Integer(), nullable=False),
        sa.Column('multiplier', sa.Float(), nullable=False),
        sa.Column('shield_used', sa.Boolean(), nullable=False),
        sa.Column('client_remaining', sa.Float(), nullable=True),
        sa.Column('server_remaining', sa.Float(), nullable=True),
        sa.Column('timing_anomaly', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.Float(), nullable=False),
        sa.UniqueConstraint('session_id', 'question_id', name='uq_quiz_answer_session_question'),
    )
    op.create_index('ix_quiz_answer_session_id', 'quiz_answer', ['session_id'])

    op.create_table(
        'powerup_definition',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('slug', sa.String(32), nullable=False),
        sa.Column('name', sa.String(64), nullable=False),
        sa.Column('cost', sa.Integer(), nullable=False),
        sa.Column('effect_type', sa.String(32), nullable=False),
        sa.Column('effect_params', sa.Text(), nullable=False),
        sa.Column('max_uses_per_session', sa.Integer(), nullable=False),
        sa.Column('cooldown_sec', sa.Integer(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
    )
    op.create_index('ix_powerup_definition_slug', 'powerup_definition', ['slug'], unique=True)

    op.create_table(
        'powerup_inventory',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=False),
        sa.Column('powerup_id', sa.Integer(), sa.ForeignKey('powerup_definition.id'), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.UniqueConstraint('user_id', 'powerup_id', name='uq_powerup_inventory_user_powerup'),
        sa.CheckConstraint('quantity >= 0', name='ck_powerup_inventory_quantity'),
    )
    op.create_index('ix_powerup_inventory_user_id', 'powerup_inventory', ['user_id'])

    op.create_table(
        'powerup_purchase',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=False),
        sa.Column('powerup_id', sa.Integer(), sa.ForeignKey('powerup_definition.id'), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_cost', sa.Integer(), nullable=False),
        sa.Column('discount_pct', sa.Integer(), nullable=False),
        sa.Column('total_cost', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.Float(), nullable=False),
    )
    op.create_index('ix_powerup_purchase_user_id', 'powerup_purchase', ['user_id'])

    op.create_table(
        'powerup_activation',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('session_id', sa.Integer(), sa.ForeignKey('quiz_session.id'), nullable=False),
        sa.Column('powerup_id', sa.Integer(), sa.ForeignKey('powerup_definition.id'), nullable=False),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=False),
        sa.Column('question_id', sa.String(64), nullable=True),
        sa.Column('client_remaining', sa.Float(), nullable=True),
        sa.Column('server_remaining', sa.Float(), nullable=False),
        sa.Column('effect', sa.Text(), nullable=False),
        sa.Column('activated_at', sa.Float(), nullable=False),
    )
    op.create_index('ix_powerup_activation_session_id', 'powerup_activation', ['session_id'])

    op.create_table(
        'active_session_pointer',
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('user.id'), primary_key=True),
        sa.Column('session_id', sa.Integer(), sa.ForeignKey('quiz_session.id'), nullable=False),
        sa.Column('claimed_at', sa.Float(), nullable=False),
    )

    op.create_table(
        'user_quiz_stats',
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('user.id'), primary_key=True),
        sa.Column('lifetime_points', sa.Integer(), nullable=False),
        sa.Column('spent_points', sa.Integer(), nullable=False),
        sa.Column('available_points', sa.Integer(), nullable=False),
        sa.Column('quizzes_played', sa.Integer(), nullable=False),
        sa.Column('total_answered', sa.Integer(), nullable=False),
        sa.Column('total_correct', sa.Integer(), nullable=False),
        sa.Column('total_wrong', sa.Integer(), nullable=False),
        sa.Column('best_score', sa.Integer(), nullable=False),
        sa.Column('longest_streak', sa.Integer(), nullable=False),
        sa.Column('daily_streak', sa.Integer(), nullable=False),
        sa.Column('last_played_day', sa.String(10), nullable=True),
        sa.CheckConstraint('available_points >= 0', name='ck_user_quiz_stats_available'),
    )

    op.create_table(
        'session_flag',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('session_id', sa.Integer(), sa.ForeignKey('quiz_session.id'), nullable=False),
        sa.Column('reason', sa.String(32), nullable=False),
        sa.Column('details', sa.Text(), nullable=True),
        sa.Column('created_at', sa.Float(), nullable=False),
        sa.Column('resolved_at', sa.Float(), nullable=True),
        sa.Column('resolution', sa.String(16), nullable=True),
    )
    op.create_index('ix_session_flag_session_id', 'session_flag', ['session_id'])

    op.create_table(
        'leaderboard_snapshot',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('scope', sa.String(16), nullable=False),
        sa.Column('scope_key', sa.String(80), nullable=False),
        sa.Column('period', sa.String(16), nullable=False),
        sa.Column('window_start', sa.Float(), nullable=False),
        sa.Column('window_end', sa.Float(), nullable=True),
        sa.Column('status', sa.String(16), nullable=False),
        sa.Column('dirty', sa.Boolean(), nullable=False),
        sa.Column('built_at', sa.Float(), nullable=True),
        sa.Column('entry_count', sa.Integer(), nullable=False),
        sa.UniqueConstraint('scope', 'scope_key', 'period', 'window_start', name='uq_leaderboard_snapshot_window'),
    )
    op.create_index('ix_leaderboard_snapshot_status', 'leaderboard_snapshot', ['status'])

    op.create_table(
        'leaderboard_entry',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('snapshot_id', sa.Integer(), sa.ForeignKey('leaderboard_snapshot.id'), nullable=False),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=False),
        sa.Column('rank', sa.Integer(), nullable=False),
        sa.Column('previous_rank', sa.Integer(), nullable=True),
        sa.Column('total_score', sa.Integer(), nullable=False),
        sa.Column('quizzes_played', sa.Integer(), nullable=False),
        sa.Column('best_single_quiz', sa.Integer(), nullable=False),
        sa.Column('total_correct', sa.Integer(), nullable=False),
        sa.Column('total_answered', sa.Integer(), nullable=False),
        sa.Column('accuracy', sa.Float(), nullable=False),
        sa.Column('first_quiz_at', sa.Float(), nullable=False),
        sa.Column('tier', sa.String(16), nullable=False),
        sa.UniqueConstraint('snapshot_id', 'user_id', name='uq_leaderboard_entry_snapshot_user'),
    )
    op.create_index('ix_leaderboard_entry_snapshot_id', 'leaderboard_entry', ['snapshot_id'])
    op.create_index('ix_leaderboard_entry_rank', 'leaderboard_entry', ['rank'])

    op.create_table(
        'leaderboard_history',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('scope', sa.String(16), nullable=False),
        sa.Column('scope_key', sa.String(80), nullable=False),
        sa.Column('period', sa.String(16), nullable=False),
        sa.Column('window_start', sa.Float(), nullable=False),
        sa.Column('window_end', sa.Float(), nullable=False),
        sa.Column('winner_user_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=True),
        sa.Column('entry_count', sa.Integer(), nullable=False),
        sa.Column('top_entries', sa.Text(), nullable=False),
        sa.Column('archived_at', sa.Float(), nullable=False),
        sa.UniqueConstraint('scope', 'scope_key', 'period', 'window_start', name='uq_leaderboard_history_window'),
    )

    op.create_table(
        'reward_grant',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=False),
        sa.Column('period_key', sa.String(160), nullable=False),
        sa.Column('tier', sa.String(16), nullable=False),
        sa.Column('rank', sa.Integer(), nullable=False),
        sa.Column('points', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.Float(), nullable=False),
        sa.UniqueConstraint('user_id', 'period_key', 'tier', name='uq_reward_grant_user_period_tier'),
    )
    op.create_index('ix_reward_grant_user_id', 'reward_grant', ['user_id'])

    op.create_table(
        'user_badge',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=False),
        sa.Column('code', sa.String(48), nullable=False),
        sa.Column('period_key', sa.String(160), nullable=False),
        sa.Column('created_at', sa.Float(), nullable=False),
        sa.UniqueConstraint('user_id', 'code', 'period_key', name='uq_user_badge_user_code_period'),
    )
    op.create_index('ix_user_badge_user_id', 'user_badge', ['user_id'])


def downgrade():
    for table in (
        'user_badge', 'reward_grant', 'leaderboard_history', 'leaderboard_entry', 'leaderboard_snapshot',
        'session_flag', 'user_quiz_stats', 'active_session_pointer', 'powerup_activation',
        'powerup_purchase', 'powerup_inventory', 'powerup_definition', 'quiz_answer', 'quiz_session', 'user',
    ):
        op.drop_table(table)
