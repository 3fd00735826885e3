"""Recoverable quiz errors.

Each error carries a stable ``code`` the client can switch on, an HTTP
status, and optional details (e.g. remaining cooldown seconds).
"""


class QuizError(Exception):
    code = 'quiz_error'
    status = 400
    default_message = 'Quiz request could not be processed'

    def __init__(self, message=None, **details):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message
        self.details = details

    def to_dict(self):
        payload = {'error': self.code, 'message': self.message}
        payload.update(self.details)
        return payload


class SessionNotFound(QuizError):
    code = 'session_not_found'
    status = 404
    default_message = 'Quiz session not found'


class SessionNotAnswerable(QuizError):
    code = 'session_not_answerable'
    status = 409
    default_message = 'Quiz session is not accepting this action'


class QuestionMismatch(QuizError):
    code = 'question_mismatch'
    default_message = 'Question is not the current question of this session'


class AnswerTooFast(QuizError):
    code = 'answer_too_fast'
    status = 429
    default_message = 'Answers are being submitted too quickly'


class QuestionPoolEmpty(QuizError):
    code = 'question_pool_empty'
    status = 503
    default_message = 'No questions are available for this artist'


class ActiveSessionConflict(QuizError):
    code = 'active_session_conflict'
    status = 409
    default_message = 'Another session was started concurrently'


class PowerupNotFound(QuizError):
    code = 'powerup_not_found'
    status = 404
    default_message = 'Powerup not found'


class InsufficientInventory(QuizError):
    code = 'insufficient_inventory'
    status = 409
    default_message = 'You do not own any of this powerup'


class MaxUsesReached(QuizError):
    code = 'max_uses_reached'
    status = 409
    default_message = 'This powerup has reached its limit for this session'


class OnCooldown(QuizError):
    code = 'on_cooldown'
    status = 409
    default_message = 'This powerup is cooling down'


class InvalidPowerupTarget(QuizError):
    code = 'invalid_target'
    default_message = 'This powerup cannot be used on the current question'


class InsufficientPoints(QuizError):
    code = 'insufficient_points'
    status = 409
    default_message = 'Not enough points for this purchase'


class InvalidQuantity(QuizError):
    code = 'invalid_quantity'
    default_message = 'Quantity is out of range'


class InvalidLeaderboardQuery(QuizError):
    code = 'invalid_scope'
    default_message = 'Unknown leaderboard scope or period'


class InvalidCompletionReason(QuizError):
    code = 'invalid_reason'
    default_message = 'Unsupported completion reason'
