"""Per-question state machine driven by the MC.

    idle --open--> open --buzz--> locked --correct--> resolved
                    ^               |
                    +---incorrect---+

Only ``open_question`` and ``next_question`` live here. The open -> locked
edge belongs to arbitration and the verdict edges to judging. ``resolved``
is terminal: nothing moves a resolved question back to open.
"""
from typing import Optional

from flask import current_app
from sqlalchemy import select

from buzzline import db
from buzzline import events
from buzzline.errors import (
    AlreadyLocked,
    GameNotRunning,
    NoNextQuestion,
    NotOpen,
    QuestionNotFound,
    QuestionResolved,
    ValidationError,
)
from buzzline.models import Game, GameStatus, Question, QuestionState, QuestionStatus, utcnow
from buzzline.services import broadcaster
from buzzline.services.lobby import McAuthority, require_mc, require_running
from buzzline.store import atomic, compare_and_swap


def get_question(game: Game, question_id) -> Question:
    try:
        question_id = int(question_id)
    except (TypeError, ValueError):
        raise ValidationError('question_id is required')
    question = Question.query.filter_by(id=question_id, game_id=game.id).first()
    if not question or not question.state:
        raise QuestionNotFound()
    return question


def get_question_state(game: Game, question_id) -> QuestionState:
    return get_question(game, question_id).state


def on_current_question(game_id: int, question_index: int):
    """SQL condition: the game is running and ``question_index`` is its current question."""
    return select(Game.id).where(
        Game.id == game_id,
        Game.status == GameStatus.RUNNING,
        Game.current_question_index == question_index,
    ).exists()


def game_position(game_id: int):
    """Committed ``(status, current_question_index)`` of a game, read past the identity map."""
    return db.session.execute(
        select(Game.status, Game.current_question_index).where(Game.id == game_id)
    ).one()


def open_question(game: Game, question_id, authority: Optional[McAuthority]) -> QuestionState:
    require_mc(game, authority)
    require_running(game)
    question = get_question(game, question_id)
    state = question.state
    if question.index != game.current_question_index:
        raise NotOpen('Only the current question can be opened')
    if state.status == QuestionStatus.RESOLVED:
        raise QuestionResolved()
    if state.status == QuestionStatus.LOCKED:
        raise AlreadyLocked('A buzz is waiting for a verdict')
    if state.status == QuestionStatus.OPEN:
        return state

    opened_at = utcnow()
    with atomic('open_question'):
        changed = compare_and_swap(
            QuestionState, {'id': state.id}, {'status': QuestionStatus.IDLE},
            {'status': QuestionStatus.OPEN, 'opened_at': opened_at},
            where=(on_current_question(game.id, question.index),),
        )
    if not changed:
        # Someone else moved the game or the question first; report where they are now
        status, current_index = game_position(game.id)
        if status != GameStatus.RUNNING:
            raise GameNotRunning(f'Game is {status}')
        if current_index != question.index:
            raise NotOpen('Only the current question can be opened')
        db_state = get_question_state(game, question.id)
        if db_state.status == QuestionStatus.OPEN:
            return db_state
        raise QuestionResolved() if db_state.status == QuestionStatus.RESOLVED else AlreadyLocked()

    current_app.logger.info(f"[question-opened] game={game.id} question={question.id} index={question.index}")
    broadcaster.publish(game.id, events.QuestionOpened(question_id=question.id, timestamp=opened_at.isoformat()))
    broadcaster.publish_snapshot(game)
    return state


def next_question(game: Game, authority: Optional[McAuthority]) -> Question:
    """Advance to the next question. The current one need not be resolved."""
    require_mc(game, authority)
    require_running(game)
    current_index = game.current_question_index
    next_index = current_index + 1
    if next_index >= len(game.questions):
        raise NoNextQuestion()

    with atomic('next_question'):
        changed = compare_and_swap(
            Game, {'id': game.id}, {'current_question_index': current_index},
            {'current_question_index': next_index},
        )
    if not changed:
        raise NoNextQuestion('The question was already advanced')

    question = game.questions[next_index]
    current_app.logger.info(f"[question-changed] game={game.id} index={current_index}->{next_index}")
    broadcaster.publish(game.id, events.QuestionChanged(question_index=next_index, question=question.to_dict()))
    broadcaster.publish_snapshot(game)
    return question
