import threading
from datetime import timezone

import pytest
from sqlalchemy import update

from buzzline import create_app, db
from buzzline.errors import AlreadyLocked, BuzzRejected, GameNotRunning, NotOpen, PlayerLocked, QuestionNotFound
from buzzline.models import BuzzEvent, Game, Player, QuestionState
from buzzline.services import arbitration, lobby, questions, scoring
from conftest import TestConfig


def _player(setup, name):
    return db.session.get(Player, setup.players[name].id)


def _state(question_id):
    return QuestionState.query.filter_by(question_id=question_id).one()


def _results(question_id):
    rows = BuzzEvent.query.filter_by(question_id=question_id).order_by(BuzzEvent.id).all()
    return [(r.player_id, r.result) for r in rows]


def test_first_buzz_wins_and_later_ones_are_too_late(running_game):
    setup = running_game
    q1 = setup.question_ids[0]
    questions.open_question(setup.game, q1, setup.authority)

    outcome = arbitration.attempt_buzz(setup.game, q1, _player(setup, 'Alice'), 1700000000000)
    assert outcome.result == 'winner'
    assert outcome.player_name == 'Alice'

    with pytest.raises(AlreadyLocked) as exc_info:
        arbitration.attempt_buzz(setup.game, q1, _player(setup, 'Bob'))
    assert exc_info.value.reason == 'TooLate'

    state = _state(q1)
    assert state.status == 'locked'
    assert state.winner_player_id == setup.players['Alice'].id
    assert _results(q1) == [
        (setup.players['Alice'].id, 'winner'),
        (setup.players['Bob'].id, 'too_late'),
    ]
    # Client clock is kept for audit only
    first = BuzzEvent.query.filter_by(question_id=q1).order_by(BuzzEvent.id).first()
    assert first.client_timestamp is not None


def test_buzz_before_open_is_rejected_and_recorded(running_game):
    setup = running_game
    q1 = setup.question_ids[0]
    with pytest.raises(NotOpen):
        arbitration.attempt_buzz(setup.game, q1, _player(setup, 'Alice'))
    assert _state(q1).status == 'idle'
    assert _results(q1) == [(setup.players['Alice'].id, 'rejected_not_open')]


def test_buzz_on_a_question_that_is_not_current(running_game):
    setup = running_game
    with pytest.raises(NotOpen):
        arbitration.attempt_buzz(setup.game, setup.question_ids[1], _player(setup, 'Alice'))


def test_buzz_on_unknown_question_is_not_recorded(running_game):
    setup = running_game
    with pytest.raises(QuestionNotFound):
        arbitration.attempt_buzz(setup.game, 424242, _player(setup, 'Alice'))
    assert BuzzEvent.query.count() == 0


def test_buzz_while_paused_is_rejected(running_game):
    setup = running_game
    q1 = setup.question_ids[0]
    questions.open_question(setup.game, q1, setup.authority)
    assert lobby.pause_game(setup.game_id, 'MC disconnected') is True

    game = db.session.get(Game, setup.game_id)
    with pytest.raises(NotOpen):
        arbitration.attempt_buzz(game, q1, _player(setup, 'Alice'))
    assert _state(q1).status == 'open'


def test_locked_out_player_stays_out_across_reopens(flask_app, make_game):
    setup = make_game(players=('Alice', 'Bob', 'Carol'))
    q1 = setup.question_ids[0]
    alice, bob, carol = (setup.players[n].id for n in ('Alice', 'Bob', 'Carol'))
    questions.open_question(setup.game, q1, setup.authority)

    arbitration.attempt_buzz(setup.game, q1, _player(setup, 'Alice'))
    scoring.judge(setup.game, q1, alice, False, setup.authority)

    with pytest.raises(PlayerLocked):
        arbitration.attempt_buzz(setup.game, q1, _player(setup, 'Alice'))

    arbitration.attempt_buzz(setup.game, q1, _player(setup, 'Bob'))
    scoring.judge(setup.game, q1, bob, False, setup.authority)

    # Both earlier responders remain excluded after the second reopen
    for name in ('Alice', 'Bob'):
        with pytest.raises(PlayerLocked):
            arbitration.attempt_buzz(setup.game, q1, _player(setup, name))

    outcome = arbitration.attempt_buzz(setup.game, q1, _player(setup, 'Carol'))
    assert outcome.player_id == carol
    assert [p.id for p in _state(q1).locked_players] == sorted([alice, bob])
    assert _results(q1).count((alice, 'rejected_locked')) == 2


def test_parse_client_timestamp():
    parsed = arbitration.parse_client_timestamp(1700000000000)
    assert parsed.tzinfo == timezone.utc
    assert parsed.year == 2023

    parsed = arbitration.parse_client_timestamp('2024-05-01T12:00:00Z')
    assert (parsed.hour, parsed.tzinfo) == (12, timezone.utc)

    assert arbitration.parse_client_timestamp('yesterday') is None
    assert arbitration.parse_client_timestamp(True) is None
    assert arbitration.parse_client_timestamp(None) is None
    assert arbitration.parse_client_timestamp({'ms': 1}) is None


@pytest.fixture()
def file_app(tmp_path):
    """App on a file-backed SQLite database so threads get their own connections."""

    class FileConfig(TestConfig):
        SQLALCHEMY_DATABASE_URI = f"sqlite:///{tmp_path / 'buzz.db'}"
        SQLALCHEMY_ENGINE_OPTIONS = {'connect_args': {'check_same_thread': False, 'timeout': 30}}

    application = create_app(FileConfig)
    with application.app_context():
        db.create_all()
    yield application
    with application.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


def test_concurrent_buzzes_have_exactly_one_winner(file_app, make_game):
    names = tuple(f'Player {n}' for n in range(8))
    with file_app.app_context():
        setup = make_game(players=names)
        game_id = setup.game_id
        question_id = setup.question_ids[0]
        questions.open_question(setup.game, question_id, setup.authority)
        player_ids = [setup.players[n].id for n in names]
        db.session.remove()

    barrier = threading.Barrier(len(player_ids))
    results = []
    failures = []

    def buzz(player_id):
        with file_app.app_context():
            try:
                game = db.session.get(Game, game_id)
                player = db.session.get(Player, player_id)
                barrier.wait(timeout=10)
                try:
                    arbitration.attempt_buzz(game, question_id, player)
                    results.append((player_id, 'winner'))
                except BuzzRejected as exc:
                    results.append((player_id, exc.reason))
            except Exception as exc:  # surfaced by the assertion below
                failures.append(exc)
            finally:
                db.session.remove()

    threads = [threading.Thread(target=buzz, args=(pid,)) for pid in player_ids]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)

    assert failures == []
    assert len(results) == len(player_ids)
    winners = [pid for pid, result in results if result == 'winner']
    assert len(winners) == 1
    assert {result for _, result in results if result != 'winner'} <= {'TooLate'}

    with file_app.app_context():
        state = QuestionState.query.filter_by(question_id=question_id).one()
        assert state.status == 'locked'
        assert state.winner_player_id == winners[0]
        recorded = BuzzEvent.query.filter_by(question_id=question_id).all()
        assert len(recorded) == len(player_ids)
        assert [e.player_id for e in recorded if e.result == 'winner'] == winners


def _commit_elsewhere(game_id, **values):
    """Commit a change to the game row on a connection the session is not using."""
    with db.engine.begin() as conn:
        conn.execute(update(Game).where(Game.id == game_id).values(**values))


def _loaded_running_game(setup):
    game = db.session.get(Game, setup.game_id)
    assert game.status == 'running'
    assert game.current_question_index == 0
    return game


def test_buzz_after_a_pause_committed_elsewhere_is_not_open(file_app, make_game):
    with file_app.app_context():
        setup = make_game()
        q1 = setup.question_ids[0]
        questions.open_question(setup.game, q1, setup.authority)
        game = _loaded_running_game(setup)
        alice = _player(setup, 'Alice')
        alice_id = alice.id

        _commit_elsewhere(setup.game_id, status='paused', paused_from='running')
        # The loaded game still reads as running; only the write sees the pause
        assert game.status == 'running'

        with pytest.raises(NotOpen) as exc_info:
            arbitration.attempt_buzz(game, q1, alice)
        assert exc_info.value.question_id == q1

        state = _state(q1)
        assert state.status == 'open'
        assert state.winner_player_id is None
        assert _results(q1) == [(alice_id, 'rejected_not_open')]
        assert db.session.get(Game, setup.game_id).status == 'paused'


def test_buzz_on_a_question_skipped_elsewhere_is_not_open(file_app, make_game):
    with file_app.app_context():
        setup = make_game()
        q1 = setup.question_ids[0]
        questions.open_question(setup.game, q1, setup.authority)
        game = _loaded_running_game(setup)
        alice = _player(setup, 'Alice')

        _commit_elsewhere(setup.game_id, current_question_index=1)

        with pytest.raises(NotOpen):
            arbitration.attempt_buzz(game, q1, alice)
        assert _state(q1).status == 'open'


def test_open_question_after_a_pause_committed_elsewhere(file_app, make_game):
    with file_app.app_context():
        setup = make_game()
        q1 = setup.question_ids[0]
        game = _loaded_running_game(setup)

        _commit_elsewhere(setup.game_id, status='paused', paused_from='running')

        with pytest.raises(GameNotRunning):
            questions.open_question(game, q1, setup.authority)
        assert _state(q1).status == 'idle'


def test_open_question_skipped_elsewhere(file_app, make_game):
    with file_app.app_context():
        setup = make_game()
        q1 = setup.question_ids[0]
        game = _loaded_running_game(setup)

        _commit_elsewhere(setup.game_id, current_question_index=1)

        with pytest.raises(NotOpen):
            questions.open_question(game, q1, setup.authority)
        assert _state(q1).status == 'idle'
