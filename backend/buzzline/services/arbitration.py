"""Buzz arbitration: many players, one winner per open epoch.

Preconditions are read first so obvious rejections are cheap, but they only
decide the error, never the winner. The winner is whoever's conditional
UPDATE commits first. Its condition is re-evaluated by the database: the
question is open, the player is not in the lock-set, and the game is still
running on this question. Client timestamps are stored for audit only;
client clocks are not trusted.

Every attempt on a known question leaves a ``BuzzEvent`` row, committed in
the same transaction as the lock when there is one.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from flask import current_app
from sqlalchemy import select

from buzzline import db
from buzzline import events
from buzzline.errors import AlreadyLocked, BuzzRejected, NotOpen, PlayerLocked
from buzzline.models import (
    BuzzEvent,
    BuzzResult,
    Game,
    GameStatus,
    Player,
    QuestionState,
    QuestionStatus,
    question_state_locked_player,
    utcnow,
)
from buzzline.services import broadcaster
from buzzline.services.questions import game_position, get_question, on_current_question
from buzzline.store import atomic, compare_and_swap


@dataclass(frozen=True)
class BuzzOutcome:
    result: str
    question_id: int
    player_id: int
    player_name: str


def parse_client_timestamp(raw) -> Optional[datetime]:
    """Accept epoch milliseconds or an ISO-8601 string. Anything else is dropped."""
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        try:
            return datetime.fromtimestamp(raw / 1000.0, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(raw, str):
        try:
            parsed = datetime.fromisoformat(raw.replace('Z', '+00:00'))
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return None


def _precheck(game: Game, state: QuestionState, question_index: int, player: Player) -> Optional[BuzzRejected]:
    if game.status != GameStatus.RUNNING or question_index != game.current_question_index:
        return NotOpen()
    if state.is_player_locked(player.id):
        return PlayerLocked()
    if state.status == QuestionStatus.LOCKED:
        return AlreadyLocked()
    if state.status != QuestionStatus.OPEN:
        return NotOpen()
    return None


_RESULT_FOR = {
    NotOpen: BuzzResult.REJECTED_NOT_OPEN,
    PlayerLocked: BuzzResult.REJECTED_LOCKED,
    AlreadyLocked: BuzzResult.TOO_LATE,
}


def attempt_buzz(game: Game, question_id, player: Player, client_timestamp=None) -> BuzzOutcome:
    """Try to become the responder for ``question_id``.

    Returns a WINNER outcome, or raises ``NotOpen``, ``AlreadyLocked`` or
    ``PlayerLocked``. The ``buzz:winner`` broadcast goes out before this
    returns.
    """
    question = get_question(game, question_id)
    state = question.state
    client_ts = parse_client_timestamp(client_timestamp)

    rejection = _precheck(game, state, question.index, player)
    with atomic('attempt_buzz'):
        if rejection is None:
            not_locked_out = ~select(question_state_locked_player.c.player_id).where(
                question_state_locked_player.c.question_state_id == state.id,
                question_state_locked_player.c.player_id == player.id,
            ).exists()
            won = compare_and_swap(
                QuestionState, {'id': state.id}, {'status': QuestionStatus.OPEN},
                {'status': QuestionStatus.LOCKED, 'winner_player_id': player.id, 'locked_at': utcnow()},
                where=(not_locked_out, on_current_question(game.id, question.index)),
            )
            if not won:
                status, current_index = game_position(game.id)
                if status != GameStatus.RUNNING or current_index != question.index:
                    rejection = NotOpen()
                else:
                    rejection = AlreadyLocked()
        result = BuzzResult.WINNER if rejection is None else _RESULT_FOR[type(rejection)]
        db.session.add(BuzzEvent(
            game_id=game.id,
            question_id=question.id,
            player_id=player.id,
            client_timestamp=client_ts,
            result=result,
        ))

    if rejection is not None:
        current_app.logger.info(
            f"[buzz-rejected] game={game.id} question={question.id} player={player.id} result={result}"
        )
        rejection.question_id = question.id
        raise rejection

    current_app.logger.info(f"[buzz-winner] game={game.id} question={question.id} player={player.id}")
    broadcaster.publish(game.id, events.BuzzWinner(
        question_id=question.id, player_id=player.id, player_name=player.name,
    ))
    broadcaster.publish_snapshot(game)
    return BuzzOutcome(result=BuzzResult.WINNER, question_id=question.id,
                       player_id=player.id, player_name=player.name)
