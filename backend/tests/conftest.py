import os
import sys
from types import SimpleNamespace

import pytest

# Ensure the backend root (containing the `buzzline` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from buzzline import create_app, db, socketio
from buzzline.services import lobby, presence


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    CORS_ORIGINS = ['http://localhost:5173']
    MIN_PLAYERS = 1
    DEFAULT_QUESTION_POINTS = 1
    GAME_CODE_LENGTH = 6
    # Cheapest cost bcrypt accepts, keeps the suite fast
    BCRYPT_LOG_ROUNDS = 4
    MC_DISCONNECT_GRACE_SEC = 0


QUESTIONS = [
    {'text': 'Capital of France?', 'answer': 'Paris', 'points': 5},
    {'text': 'Legs on a spider?', 'answer': '8', 'points': 3},
]


@pytest.fixture()
def flask_app():
    application = create_app(TestConfig)
    with application.app_context():
        # Ensure models are imported so tables are created
        import buzzline.models  # noqa: F401
        db.create_all()
        yield application
        presence.registry.clear()
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def sio_factory(flask_app):
    """Open Socket.IO test clients on /ws; all are disconnected at teardown."""
    opened = []

    def _open():
        test_client = socketio.test_client(
            flask_app,
            flask_test_client=flask_app.test_client(),
            namespace='/ws'
        )
        opened.append(test_client)
        return test_client

    yield _open
    for test_client in opened:
        if test_client.is_connected('/ws'):
            test_client.disconnect(namespace='/ws')


def build_game(negative=False, players=('Alice', 'Bob'), start=True):
    """Create a game with two questions (5 and 3 points) straight through the services."""
    game, mc_token = lobby.create_game(QUESTIONS, allow_negative_points=negative)
    authority = lobby.authorize_mc(game, mc_token)
    joined = {}
    for name in players:
        player, token = lobby.join_game(game, name)
        joined[name] = SimpleNamespace(id=player.id, token=token, name=name)
    if start:
        lobby.start_game(game, authority)
    return SimpleNamespace(
        game=game,
        game_id=game.id,
        code=game.game_code,
        mc_token=mc_token,
        authority=authority,
        question_ids=[q.id for q in game.questions],
        players=joined,
    )


@pytest.fixture()
def make_game():
    return build_game


@pytest.fixture()
def running_game(flask_app):
    return build_game()
