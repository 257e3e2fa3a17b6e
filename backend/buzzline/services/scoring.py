from dataclasses import dataclass
from typing import Optional

from flask import current_app
from sqlalchemy import delete, insert, update

from buzzline import db
from buzzline import events
from buzzline.errors import NoPendingJudgment, PlayerNotFound, ValidationError, WinnerMismatch
from buzzline.models import Game, Player, QuestionState, QuestionStatus, question_state_locked_player, utcnow
from buzzline.services import broadcaster
from buzzline.services.lobby import McAuthority, require_mc, require_running
from buzzline.services.questions import get_question
from buzzline.store import atomic, compare_and_swap

# Points taken from a wrong answer when the game allows negative scores
WRONG_ANSWER_PENALTY = 1


@dataclass(frozen=True)
class JudgeResult:
    is_correct: bool
    question_id: int
    player_id: int
    points: int = 0
    penalty: int = 0
    status: str = ''


def _add_to_score(player_id: int, delta: int) -> None:
    db.session.execute(
        update(Player)
        .where(Player.id == player_id)
        .values(score=Player.score + delta)
        .execution_options(synchronize_session=False)
    )


def judge(game: Game, question_id, claimed_winner_id, is_correct, authority: Optional[McAuthority]) -> JudgeResult:
    """Apply the MC's verdict on the locked-in responder.

    Correct: the winner gains the question's points and the question is
    resolved. Incorrect: the winner joins the lock-set, loses
    ``WRONG_ANSWER_PENALTY`` when negative scoring is on, and buzzing reopens
    for everybody else. Score and state change in one transaction.
    """
    require_mc(game, authority)
    if not isinstance(is_correct, bool):
        raise ValidationError('is_correct must be a boolean')
    try:
        claimed_winner_id = int(claimed_winner_id)
    except (TypeError, ValueError):
        raise ValidationError('player_id is required')
    require_running(game)
    question = get_question(game, question_id)
    state = question.state
    if state.status != QuestionStatus.LOCKED:
        raise NoPendingJudgment()
    if state.winner_player_id != claimed_winner_id:
        raise WinnerMismatch()

    # The verdict only lands on the exact locked epoch it was given for
    epoch = {'status': QuestionStatus.LOCKED, 'winner_player_id': claimed_winner_id}
    penalty = WRONG_ANSWER_PENALTY if game.allow_negative_points else 0
    with atomic('judge'):
        if is_correct:
            changed = compare_and_swap(
                QuestionState, {'id': state.id}, epoch,
                {'status': QuestionStatus.RESOLVED, 'winner_player_id': None,
                 'resolved_by_player_id': claimed_winner_id, 'resolved_at': utcnow()},
            )
            if not changed:
                raise NoPendingJudgment()
            _add_to_score(claimed_winner_id, question.points)
        else:
            changed = compare_and_swap(
                QuestionState, {'id': state.id}, epoch,
                {'status': QuestionStatus.OPEN, 'winner_player_id': None},
            )
            if not changed:
                raise NoPendingJudgment()
            db.session.execute(insert(question_state_locked_player).values(
                question_state_id=state.id, player_id=claimed_winner_id,
            ))
            if penalty:
                _add_to_score(claimed_winner_id, -penalty)

    if is_correct:
        current_app.logger.info(
            f"[judge-correct] game={game.id} question={question.id} player={claimed_winner_id} points={question.points}"
        )
        broadcaster.publish(game.id, events.BuzzCorrect(
            question_id=question.id, player_id=claimed_winner_id, points=question.points,
        ))
        broadcaster.publish_scoreboard(game)
        broadcaster.publish_snapshot(game)
        return JudgeResult(is_correct=True, question_id=question.id, player_id=claimed_winner_id,
                           points=question.points, status=QuestionStatus.RESOLVED)

    current_app.logger.info(
        f"[judge-wrong] game={game.id} question={question.id} player={claimed_winner_id} penalty={penalty}"
    )
    broadcaster.publish(game.id, events.BuzzWrong(
        question_id=question.id, player_id=claimed_winner_id, penalty=penalty,
    ))
    broadcaster.publish(game.id, events.PlayerLocked(question_id=question.id, player_id=claimed_winner_id))
    broadcaster.publish(game.id, events.QuestionReopened(question_id=question.id))
    if penalty:
        broadcaster.publish_scoreboard(game)
    broadcaster.publish_snapshot(game)
    return JudgeResult(is_correct=False, question_id=question.id, player_id=claimed_winner_id,
                       penalty=penalty, status=QuestionStatus.OPEN)


def unlock_player(game: Game, question_id, player_id, authority: Optional[McAuthority]) -> bool:
    """MC override: let a locked-out player buzz on this question again.

    Returns False when the player was not locked out (nothing to do).
    """
    require_mc(game, authority)
    question = get_question(game, question_id)
    try:
        player_id = int(player_id)
    except (TypeError, ValueError):
        raise ValidationError('player_id is required')
    if not Player.query.filter_by(id=player_id, game_id=game.id).first():
        raise PlayerNotFound()

    with atomic('unlock_player'):
        result = db.session.execute(delete(question_state_locked_player).where(
            question_state_locked_player.c.question_state_id == question.state.id,
            question_state_locked_player.c.player_id == player_id,
        ))
    if not result.rowcount:
        return False
    current_app.logger.info(f"[player-unlocked] game={game.id} question={question.id} player={player_id}")
    broadcaster.publish(game.id, events.PlayerUnlocked(question_id=question.id, player_id=player_id))
    broadcaster.publish_snapshot(game)
    return True
