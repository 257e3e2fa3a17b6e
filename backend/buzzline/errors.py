"""Exceptions raised by the game engine.

Every error carries a stable ``code`` (sent to clients as ``error``) and the
HTTP status the games blueprint answers with. Socket handlers send the same
code back in their acknowledgement.
"""


class BuzzlineError(Exception):
    code = 'error'
    http_status = 400
    default_message = 'Request failed'

    def __init__(self, message=None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self):
        return {'error': self.code, 'message': self.message}


# ---- Validation ----

class ValidationError(BuzzlineError):
    code = 'validation_error'
    default_message = 'Invalid request'


class GameNotFound(BuzzlineError):
    code = 'game_not_found'
    http_status = 404
    default_message = 'Game not found'


class QuestionNotFound(BuzzlineError):
    code = 'question_not_found'
    http_status = 404
    default_message = 'Question not found'


class PlayerNotFound(BuzzlineError):
    code = 'player_not_found'
    http_status = 404
    default_message = 'Player not found'


# ---- Authorization ----

class NotAuthorized(BuzzlineError):
    code = 'not_authorized'
    http_status = 403
    default_message = 'Invalid or missing credential'


# ---- State conflicts ----

class StateConflict(BuzzlineError):
    code = 'state_conflict'
    http_status = 409


class BuzzRejected(StateConflict):
    """A buzz that did not win. ``reason`` is what the caller sees in buzz:rejected."""
    reason = None
    question_id = None


class NotOpen(BuzzRejected):
    code = 'not_open'
    reason = 'NotOpen'
    default_message = 'Buzzing is not open for this question'


class AlreadyLocked(BuzzRejected):
    code = 'too_late'
    reason = 'TooLate'
    default_message = 'Too late, someone already buzzed'


class PlayerLocked(BuzzRejected):
    code = 'player_locked'
    reason = 'PlayerLocked'
    default_message = 'You are locked out of this question'


class NoPendingJudgment(StateConflict):
    code = 'no_pending_judgment'
    default_message = 'No buzz is waiting for a verdict'


class WinnerMismatch(StateConflict):
    code = 'winner_mismatch'
    default_message = 'This player is not the current winner'


class QuestionResolved(StateConflict):
    code = 'question_resolved'
    default_message = 'This question is already resolved'


class NoNextQuestion(StateConflict):
    code = 'no_next_question'
    default_message = 'No more questions'


class GameNotRunning(StateConflict):
    code = 'game_not_running'
    default_message = 'Game is not running'


class NotInLobby(StateConflict):
    code = 'not_in_lobby'
    default_message = 'Game is not in the lobby'


class NameTaken(StateConflict):
    code = 'name_taken'
    default_message = 'This name is already taken'


class McNotConnected(StateConflict):
    code = 'mc_not_connected'
    default_message = 'Connect as MC before resuming'


# ---- Store ----

class StoreFailure(BuzzlineError):
    code = 'store_failure'
    http_status = 503
    default_message = 'Temporary storage failure, please retry'
