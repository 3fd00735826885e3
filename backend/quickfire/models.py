from quickfire import db, bcrypt
from flask_login import UserMixin
import json

# Session lifecycle
STATUS_COUNTDOWN = 'countdown'
STATUS_ACTIVE = 'active'
STATUS_PAUSED = 'paused'
STATUS_COMPLETED = 'completed'
STATUS_ABANDONED = 'abandoned'
OPEN_STATUSES = (STATUS_COUNTDOWN, STATUS_ACTIVE, STATUS_PAUSED)
TERMINAL_STATUSES = (STATUS_COMPLETED, STATUS_ABANDONED)

# Anti-cheat review
REVIEW_NONE = 'none'
REVIEW_PENDING = 'pending_review'
REVIEW_CLEARED = 'cleared'
REVIEW_CONFIRMED = 'confirmed'
RANKABLE_REVIEW_STATUSES = (REVIEW_NONE, REVIEW_CLEARED)


class User(UserMixin, db.Model):
    __tablename__ = 'user'
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(64), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(256), nullable=False)
    country = db.Column(db.String(2), nullable=True, index=True)

    def set_password(self, password):
        self.password_hash = bcrypt.generate_password_hash(password).decode('utf-8')

    def check_password(self, password):
        return bcrypt.check_password_hash(self.password_hash, password)

    def to_dict(self):
        return {
            'id': self.id,
            'username': self.username,
            'country': self.country,
        }


class QuizSession(db.Model):
    __tablename__ = 'quiz_session'
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    artist_id = db.Column(db.String(64), nullable=False, index=True)
    status = db.Column(db.String(16), nullable=False, default=STATUS_COUNTDOWN, index=True)

    # Clock (epoch seconds, server time)
    base_duration_sec = db.Column(db.Integer, nullable=False)
    countdown_sec = db.Column(db.Integer, nullable=False, default=0)
    bonus_seconds = db.Column(db.Integer, nullable=False, default=0)
    penalty_seconds = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.Float, nullable=False)
    clock_started_at = db.Column(db.Float, nullable=False)
    frozen_seconds = db.Column(db.Float, nullable=False, default=0.0)
    pause_started_at = db.Column(db.Float, nullable=True)
    pause_until = db.Column(db.Float, nullable=True)
    last_activity_at = db.Column(db.Float, nullable=False)
    question_served_at = db.Column(db.Float, nullable=True)
    last_answer_at = db.Column(db.Float, nullable=True)
    completed_at = db.Column(db.Float, nullable=True, index=True)

    # Point accumulators
    base_points = db.Column(db.Integer, nullable=False, default=0)
    listening_points = db.Column(db.Integer, nullable=False, default=0)
    streak_points = db.Column(db.Integer, nullable=False, default=0)
    multiplier_points = db.Column(db.Integer, nullable=False, default=0)
    penalty_points = db.Column(db.Integer, nullable=False, default=0)
    current_streak = db.Column(db.Integer, nullable=False, default=0)
    longest_streak = db.Column(db.Integer, nullable=False, default=0)
    correct_count = db.Column(db.Integer, nullable=False, default=0)
    wrong_count = db.Column(db.Integer, nullable=False, default=0)
    skipped_count = db.Column(db.Integer, nullable=False, default=0)

    # Questions: full pool stays server-side, answers included
    listening_hours = db.Column(db.Float, nullable=False, default=0.0)
    question_pool = db.Column(db.Text, nullable=False, default='[]')
    question_queue = db.Column(db.Text, nullable=False, default='[]')
    current_question_id = db.Column(db.String(64), nullable=True)
    removed_options = db.Column(db.Text, nullable=True)

    # Active effects
    active_multiplier = db.Column(db.Float, nullable=True)
    multiplier_scope = db.Column(db.String(16), nullable=True)
    shield_charges = db.Column(db.Integer, nullable=False, default=0)

    # Outcome
    final_score = db.Column(db.Integer, nullable=True)
    completion_reason = db.Column(db.String(32), nullable=True)
    review_status = db.Column(db.String(16), nullable=False, default=REVIEW_NONE, index=True)
    timing_anomalies = db.Column(db.Integer, nullable=False, default=0)

    user = db.relationship('User')
    answers = db.relationship('QuizAnswer', back_populates='session', lazy='dynamic', order_by='QuizAnswer.id')

    @property
    def is_open(self):
        return self.status in OPEN_STATUSES

    @property
    def total_duration(self):
        return self.base_duration_sec + self.bonus_seconds - self.penalty_seconds

    @property
    def earned_points(self):
        return self.base_points + self.listening_points + self.streak_points + self.multiplier_points

    def pool(self):
        return json.loads(self.question_pool or '[]')

    def queue(self):
        return json.loads(self.question_queue or '[]')

    def question(self, question_id):
        for q in self.pool():
            if str(q['id']) == str(question_id):
                return q
        return None

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'artist_id': self.artist_id,
            'status': self.status,
            'total_duration': self.total_duration,
            'bonus_seconds': self.bonus_seconds,
            'penalty_seconds': self.penalty_seconds,
            'points': {
                'base': self.base_points,
                'listening': self.listening_points,
                'streak': self.streak_points,
                'multiplier': self.multiplier_points,
                'penalty': self.penalty_points,
            },
            'current_streak': self.current_streak,
            'longest_streak': self.longest_streak,
            'correct': self.correct_count,
            'wrong': self.wrong_count,
            'skipped': self.skipped_count,
            'active_multiplier': self.active_multiplier,
            'multiplier_scope': self.multiplier_scope,
            'shield_charges': self.shield_charges,
            'final_score': self.final_score,
            'completion_reason': self.completion_reason,
            'started_at': self.created_at,
            'completed_at': self.completed_at,
        }


class QuizAnswer(db.Model):
    __tablename__ = 'quiz_answer'
    __table_args__ = (
        db.UniqueConstraint('session_id', 'question_id', name='uq_quiz_answer_session_question'),
    )
    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.Integer, db.ForeignKey('quiz_session.id'), nullable=False, index=True)
    question_id = db.Column(db.String(64), nullable=False)
    selected_choice = db.Column(db.String(256), nullable=True)
    is_correct = db.Column(db.Boolean, nullable=False, default=False)
    skipped = db.Column(db.Boolean, nullable=False, default=False)
    difficulty = db.Column(db.String(16), nullable=False)
    base_points = db.Column(db.Integer, nullable=False, default=0)
    listening_bonus = db.Column(db.Integer, nullable=False, default=0)
    streak_bonus = db.Column(db.Integer, nullable=False, default=0)
    multiplier_bonus = db.Column(db.Integer, nullable=False, default=0)
    penalty = db.Column(db.Integer, nullable=False, default=0)
    net_points = db.Column(db.Integer, nullable=False, default=0)
    time_penalty_sec = db.Column(db.Integer, nullable=False, default=0)
    time_taken_ms = db.Column(db.Integer, nullable=False, default=0)
    streak_at_answer = db.Column(db.Integer, nullable=False, default=0)
    multiplier = db.Column(db.Float, nullable=False, default=1.0)
    shield_used = db.Column(db.Boolean, nullable=False, default=False)
    client_remaining = db.Column(db.Float, nullable=True)
    server_remaining = db.Column(db.Float, nullable=True)
    timing_anomaly = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.Float, nullable=False)

    session = db.relationship('QuizSession', back_populates='answers')

    def breakdown(self):
        return {
            'base': self.base_points,
            'listening_bonus': self.listening_bonus,
            'streak_bonus': self.streak_bonus,
            'multiplier_bonus': self.multiplier_bonus,
            'penalty': self.penalty,
            'net': self.net_points,
        }


class PowerupDefinition(db.Model):
    __tablename__ = 'powerup_definition'
    id = db.Column(db.Integer, primary_key=True)
    slug = db.Column(db.String(32), unique=True, nullable=False, index=True)
    name = db.Column(db.String(64), nullable=False)
    cost = db.Column(db.Integer, nullable=False)
    effect_type = db.Column(db.String(32), nullable=False)
    effect_params = db.Column(db.Text, nullable=False, default='{}')
    max_uses_per_session = db.Column(db.Integer, nullable=False, default=1)
    cooldown_sec = db.Column(db.Integer, nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    def params(self):
        return json.loads(self.effect_params or '{}')

    def to_dict(self):
        return {
            'id': self.id,
            'slug': self.slug,
            'name': self.name,
            'cost': self.cost,
            'effect_type': self.effect_type,
            'effect_params': self.params(),
            'max_uses_per_session': self.max_uses_per_session,
            'cooldown_sec': self.cooldown_sec,
        }


class PowerupInventoryEntry(db.Model):
    __tablename__ = 'powerup_inventory'
    __table_args__ = (
        db.UniqueConstraint('user_id', 'powerup_id', name='uq_powerup_inventory_user_powerup'),
        db.CheckConstraint('quantity >= 0', name='ck_powerup_inventory_quantity'),
    )
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    powerup_id = db.Column(db.Integer, db.ForeignKey('powerup_definition.id'), nullable=False)
    quantity = db.Column(db.Integer, nullable=False, default=0)
    version = db.Column(db.Integer, nullable=False, default=0)

    powerup = db.relationship('PowerupDefinition')


class PowerupPurchase(db.Model):
    __tablename__ = 'powerup_purchase'
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    powerup_id = db.Column(db.Integer, db.ForeignKey('powerup_definition.id'), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    unit_cost = db.Column(db.Integer, nullable=False)
    discount_pct = db.Column(db.Integer, nullable=False, default=0)
    total_cost = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.Float, nullable=False)


class PowerupActivation(db.Model):
    __tablename__ = 'powerup_activation'
    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.Integer, db.ForeignKey('quiz_session.id'), nullable=False, index=True)
    powerup_id = db.Column(db.Integer, db.ForeignKey('powerup_definition.id'), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    question_id = db.Column(db.String(64), nullable=True)
    client_remaining = db.Column(db.Float, nullable=True)
    server_remaining = db.Column(db.Float, nullable=False)
    effect = db.Column(db.Text, nullable=False, default='{}')
    activated_at = db.Column(db.Float, nullable=False)


class ActiveSessionPointer(db.Model):
    __tablename__ = 'active_session_pointer'
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), primary_key=True)
    session_id = db.Column(db.Integer, db.ForeignKey('quiz_session.id'), nullable=False)
    claimed_at = db.Column(db.Float, nullable=False)


class UserQuizStats(db.Model):
    __tablename__ = 'user_quiz_stats'
    __table_args__ = (
        db.CheckConstraint('available_points >= 0', name='ck_user_quiz_stats_available'),
    )
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), primary_key=True)
    lifetime_points = db.Column(db.Integer, nullable=False, default=0)
    spent_points = db.Column(db.Integer, nullable=False, default=0)
    available_points = db.Column(db.Integer, nullable=False, default=0)
    quizzes_played = db.Column(db.Integer, nullable=False, default=0)
    total_answered = db.Column(db.Integer, nullable=False, default=0)
    total_correct = db.Column(db.Integer, nullable=False, default=0)
    total_wrong = db.Column(db.Integer, nullable=False, default=0)
    best_score = db.Column(db.Integer, nullable=False, default=0)
    longest_streak = db.Column(db.Integer, nullable=False, default=0)
    daily_streak = db.Column(db.Integer, nullable=False, default=0)
    last_played_day = db.Column(db.String(10), nullable=True)  # YYYY-MM-DD, UTC

    def to_dict(self):
        return {
            'user_id': self.user_id,
            'lifetime_points': self.lifetime_points,
            'spent_points': self.spent_points,
            'available_points': self.available_points,
            'quizzes_played': self.quizzes_played,
            'total_answered': self.total_answered,
            'total_correct': self.total_correct,
            'total_wrong': self.total_wrong,
            'best_score': self.best_score,
            'longest_streak': self.longest_streak,
            'daily_streak': self.daily_streak,
        }


class SessionFlag(db.Model):
    __tablename__ = 'session_flag'
    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.Integer, db.ForeignKey('quiz_session.id'), nullable=False, index=True)
    reason = db.Column(db.String(32), nullable=False)
    details = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.Float, nullable=False)
    resolved_at = db.Column(db.Float, nullable=True)
    resolution = db.Column(db.String(16), nullable=True)


class LeaderboardSnapshot(db.Model):
    __tablename__ = 'leaderboard_snapshot'
    __table_args__ = (
        db.UniqueConstraint('scope', 'scope_key', 'period', 'window_start', name='uq_leaderboard_snapshot_window'),
    )
    id = db.Column(db.Integer, primary_key=True)
    scope = db.Column(db.String(16), nullable=False)
    scope_key = db.Column(db.String(80), nullable=False, default='')
    period = db.Column(db.String(16), nullable=False)
    window_start = db.Column(db.Float, nullable=False)
    window_end = db.Column(db.Float, nullable=True)  # None for all_time
    status = db.Column(db.String(16), nullable=False, default='live', index=True)
    dirty = db.Column(db.Boolean, nullable=False, default=True)
    built_at = db.Column(db.Float, nullable=True)
    entry_count = db.Column(db.Integer, nullable=False, default=0)

    entries = db.relationship('LeaderboardEntry', back_populates='snapshot', lazy='dynamic',
                              cascade='all, delete-orphan')

    def to_dict(self):
        return {
            'id': self.id,
            'scope': self.scope,
            'scope_key': self.scope_key,
            'period': self.period,
            'window_start': self.window_start,
            'window_end': self.window_end,
            'status': self.status,
            'built_at': self.built_at,
            'entry_count': self.entry_count,
        }


class LeaderboardEntry(db.Model):
    __tablename__ = 'leaderboard_entry'
    __table_args__ = (
        db.UniqueConstraint('snapshot_id', 'user_id', name='uq_leaderboard_entry_snapshot_user'),
    )
    id = db.Column(db.Integer, primary_key=True)
    snapshot_id = db.Column(db.Integer, db.ForeignKey('leaderboard_snapshot.id'), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    rank = db.Column(db.Integer, nullable=False, index=True)
    previous_rank = db.Column(db.Integer, nullable=True)
    total_score = db.Column(db.Integer, nullable=False, default=0)
    quizzes_played = db.Column(db.Integer, nullable=False, default=0)
    best_single_quiz = db.Column(db.Integer, nullable=False, default=0)
    total_correct = db.Column(db.Integer, nullable=False, default=0)
    total_answered = db.Column(db.Integer, nullable=False, default=0)
    accuracy = db.Column(db.Float, nullable=False, default=0.0)
    first_quiz_at = db.Column(db.Float, nullable=False)
    tier = db.Column(db.String(16), nullable=False)

    snapshot = db.relationship('LeaderboardSnapshot', back_populates='entries')
    user = db.relationship('User')

    def to_dict(self):
        return {
            'user_id': self.user_id,
            'username': self.user.username if self.user else None,
            'rank': self.rank,
            'previous_rank': self.previous_rank,
            'total_score': self.total_score,
            'quizzes_played': self.quizzes_played,
            'best_single_quiz': self.best_single_quiz,
            'total_correct': self.total_correct,
            'accuracy': self.accuracy,
            'tier': self.tier,
        }


class LeaderboardHistory(db.Model):
    __tablename__ = 'leaderboard_history'
    __table_args__ = (
        db.UniqueConstraint('scope', 'scope_key', 'period', 'window_start', name='uq_leaderboard_history_window'),
    )
    id = db.Column(db.Integer, primary_key=True)
    scope = db.Column(db.String(16), nullable=False)
    scope_key = db.Column(db.String(80), nullable=False, default='')
    period = db.Column(db.String(16), nullable=False)
    window_start = db.Column(db.Float, nullable=False)
    window_end = db.Column(db.Float, nullable=False)
    winner_user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=True)
    entry_count = db.Column(db.Integer, nullable=False, default=0)
    top_entries = db.Column(db.Text, nullable=False, default='[]')
    archived_at = db.Column(db.Float, nullable=False)

    def to_dict(self):
        return {
            'scope': self.scope,
            'scope_key': self.scope_key,
            'period': self.period,
            'window_start': self.window_start,
            'window_end': self.window_end,
            'winner_user_id': self.winner_user_id,
            'entry_count': self.entry_count,
            'top_entries': json.loads(self.top_entries or '[]'),
            'archived_at': self.archived_at,
        }


class RewardGrant(db.Model):
    __tablename__ = 'reward_grant'
    __table_args__ = (
        db.UniqueConstraint('user_id', 'period_key', 'tier', name='uq_reward_grant_user_period_tier'),
    )
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    period_key = db.Column(db.String(160), nullable=False)
    tier = db.Column(db.String(16), nullable=False)
    rank = db.Column(db.Integer, nullable=False)
    points = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.Float, nullable=False)


class UserBadge(db.Model):
    __tablename__ = 'user_badge'
    __table_args__ = (
        db.UniqueConstraint('user_id', 'code', 'period_key', name='uq_user_badge_user_code_period'),
    )
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    code = db.Column(db.String(48), nullable=False)
    period_key = db.Column(db.String(160), nullable=False, default='')
    created_at = db.Column(db.Float, nullable=False)

    def to_dict(self):
        return {
            'code': self.code,
            'period_key': self.period_key or None,
            'created_at': self.created_at,
        }
