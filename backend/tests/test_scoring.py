import pytest
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from buzzline import db
from buzzline.errors import (
    AlreadyLocked,
    GameNotRunning,
    NoNextQuestion,
    NoPendingJudgment,
    NotAuthorized,
    NotOpen,
    QuestionResolved,
    ValidationError,
    WinnerMismatch,
)
from buzzline.models import Player, QuestionState
from buzzline.services import arbitration, lobby, questions, scoring
from buzzline.services.lobby import McAuthority


def _player(setup, name):
    return db.session.get(Player, setup.players[name].id)


def _state(question_id):
    return QuestionState.query.filter_by(question_id=question_id).one()


def _lock_in(setup, name, question_index=0):
    question_id = setup.question_ids[question_index]
    questions.open_question(setup.game, question_id, setup.authority)
    arbitration.attempt_buzz(setup.game, question_id, _player(setup, name))
    return question_id


def test_correct_answer_awards_points_and_resolves(running_game):
    setup = running_game
    alice = setup.players['Alice'].id
    q1 = _lock_in(setup, 'Alice')

    result = scoring.judge(setup.game, q1, alice, True, setup.authority)
    assert (result.is_correct, result.points, result.status) == (True, 5, 'resolved')

    state = _state(q1)
    assert state.status == 'resolved'
    assert state.winner_player_id is None
    assert state.resolved_by_player_id == alice
    assert state.resolved_at is not None
    assert _player(setup, 'Alice').score == 5


def test_wrong_answer_locks_player_and_reopens(running_game):
    setup = running_game
    alice = setup.players['Alice'].id
    q1 = _lock_in(setup, 'Alice')

    result = scoring.judge(setup.game, q1, alice, False, setup.authority)
    assert (result.is_correct, result.penalty, result.status) == (False, 0, 'open')

    state = _state(q1)
    assert state.status == 'open'
    assert state.winner_player_id is None
    assert state.is_player_locked(alice)
    assert _player(setup, 'Alice').score == 0


def test_wrong_answer_costs_a_point_with_negative_scoring(flask_app, make_game):
    setup = make_game(negative=True)
    alice = setup.players['Alice'].id
    q1 = _lock_in(setup, 'Alice')

    result = scoring.judge(setup.game, q1, alice, False, setup.authority)
    assert result.penalty == scoring.WRONG_ANSWER_PENALTY
    assert _player(setup, 'Alice').score == -1


def test_judge_rejects_mismatched_or_missing_winner(running_game):
    setup = running_game
    alice, bob = setup.players['Alice'].id, setup.players['Bob'].id
    q1 = setup.question_ids[0]

    questions.open_question(setup.game, q1, setup.authority)
    with pytest.raises(NoPendingJudgment):
        scoring.judge(setup.game, q1, alice, True, setup.authority)

    arbitration.attempt_buzz(setup.game, q1, _player(setup, 'Alice'))
    with pytest.raises(WinnerMismatch):
        scoring.judge(setup.game, q1, bob, True, setup.authority)
    with pytest.raises(ValidationError):
        scoring.judge(setup.game, q1, alice, 'true', setup.authority)
    with pytest.raises(ValidationError):
        scoring.judge(setup.game, q1, None, True, setup.authority)

    # Nothing changed
    assert _state(q1).winner_player_id == alice
    assert _player(setup, 'Alice').score == 0


def test_only_the_mc_of_this_game_may_judge(flask_app, make_game):
    setup = make_game()
    other = make_game()
    q1 = _lock_in(setup, 'Alice')
    alice = setup.players['Alice'].id

    with pytest.raises(NotAuthorized):
        scoring.judge(setup.game, q1, alice, True, None)
    with pytest.raises(NotAuthorized):
        scoring.judge(setup.game, q1, alice, True, other.authority)
    with pytest.raises(NotAuthorized):
        scoring.judge(setup.game, q1, alice, True, McAuthority(game_id=-1))
    assert _state(q1).status == 'locked'


def test_resolved_question_is_terminal(running_game):
    setup = running_game
    alice = setup.players['Alice'].id
    q1 = _lock_in(setup, 'Alice')
    scoring.judge(setup.game, q1, alice, True, setup.authority)

    with pytest.raises(QuestionResolved):
        questions.open_question(setup.game, q1, setup.authority)
    with pytest.raises(NotOpen):
        arbitration.attempt_buzz(setup.game, q1, _player(setup, 'Bob'))
    with pytest.raises(NoPendingJudgment):
        scoring.judge(setup.game, q1, alice, True, setup.authority)
    assert _player(setup, 'Alice').score == 5


def test_open_question_is_idempotent_but_not_over_a_lock(running_game):
    setup = running_game
    q1 = setup.question_ids[0]
    first = questions.open_question(setup.game, q1, setup.authority)
    opened_at = first.opened_at
    again = questions.open_question(setup.game, q1, setup.authority)
    assert again.status == 'open'
    assert again.opened_at == opened_at

    arbitration.attempt_buzz(setup.game, q1, _player(setup, 'Alice'))
    with pytest.raises(AlreadyLocked):
        questions.open_question(setup.game, q1, setup.authority)

    # Only the current question may be opened
    with pytest.raises(NotOpen):
        questions.open_question(setup.game, setup.question_ids[1], setup.authority)


def test_unlock_player_is_an_explicit_override(running_game):
    setup = running_game
    alice = setup.players['Alice'].id
    q1 = _lock_in(setup, 'Alice')
    scoring.judge(setup.game, q1, alice, False, setup.authority)

    assert scoring.unlock_player(setup.game, q1, alice, setup.authority) is True
    assert not _state(q1).is_player_locked(alice)
    # Nothing left to unlock
    assert scoring.unlock_player(setup.game, q1, alice, setup.authority) is False

    outcome = arbitration.attempt_buzz(setup.game, q1, _player(setup, 'Alice'))
    assert outcome.result == 'winner'


def test_next_question_moves_on_without_resolving(running_game):
    setup = running_game
    q1 = _lock_in(setup, 'Alice')

    question = questions.next_question(setup.game, setup.authority)
    assert question.index == 1
    assert setup.game.current_question_index == 1
    # The skipped question keeps its state
    assert _state(q1).status == 'locked'

    with pytest.raises(NoNextQuestion):
        questions.next_question(setup.game, setup.authority)


def test_engine_operations_need_a_running_game(running_game):
    setup = running_game
    lobby.pause_game(setup.game_id, 'MC disconnected')
    with pytest.raises(GameNotRunning):
        questions.next_question(setup.game, setup.authority)
    with pytest.raises(GameNotRunning):
        questions.open_question(setup.game, setup.question_ids[0], setup.authority)


def test_winner_exists_only_while_locked(running_game):
    setup = running_game
    state = _state(setup.question_ids[0])

    with pytest.raises(IntegrityError):
        db.session.execute(
            update(QuestionState).where(QuestionState.id == state.id).values(status='locked')
        )
    db.session.rollback()

    with pytest.raises(IntegrityError):
        db.session.execute(
            update(QuestionState)
            .where(QuestionState.id == state.id)
            .values(winner_player_id=setup.players['Alice'].id)
        )
    db.session.rollback()
