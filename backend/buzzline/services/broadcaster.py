"""Fan-out of engine events to Socket.IO rooms.

Every connection attached to a game joins ``game:<id>``. MC connections
also join ``game:<id>:mc``, the only room that ever receives answer text;
players and screens join ``game:<id>:public`` instead. Snapshots go to the
latter two so each connection gets exactly one view per transition.
Emits are fire-and-forget; nothing is stored for redelivery.
"""
from buzzline import socketio
from buzzline import events
from buzzline.models import Game

NAMESPACE = '/ws'


def game_room(game_id: int) -> str:
    return f"game:{game_id}"


def mc_room(game_id: int) -> str:
    return f"game:{game_id}:mc"


def public_room(game_id: int) -> str:
    return f"game:{game_id}:public"


def publish(game_id: int, event: events.Event) -> None:
    socketio.emit(event.name, event.payload(), to=game_room(game_id), namespace=NAMESPACE)


def publish_to_mc(game_id: int, event: events.Event) -> None:
    socketio.emit(event.name, event.payload(), to=mc_room(game_id), namespace=NAMESPACE)


def publish_to_public(game_id: int, event: events.Event) -> None:
    socketio.emit(event.name, event.payload(), to=public_room(game_id), namespace=NAMESPACE)


def send_to_connection(sid: str, event: events.Event) -> None:
    socketio.emit(event.name, event.payload(), to=sid, namespace=NAMESPACE)


def build_snapshot(game: Game, include_answer: bool = False) -> events.StateSnapshot:
    question = game.current_question
    return events.StateSnapshot(
        game_code=game.game_code,
        status=game.status,
        current_question_index=game.current_question_index,
        question_count=len(game.questions),
        current_question=question.to_dict(include_answer=include_answer) if question else None,
        question_state=question.state.to_dict() if question and question.state else None,
        players=[p.to_dict() for p in sorted(game.players, key=lambda p: (-p.score, p.id))],
    )


def publish_snapshot(game: Game) -> None:
    """Answer-hidden snapshot for players and screens, the full one for the MC room."""
    publish_to_public(game.id, build_snapshot(game, include_answer=False))
    publish_to_mc(game.id, build_snapshot(game, include_answer=True))


def publish_scoreboard(game: Game) -> None:
    publish(game.id, events.ScoreboardUpdated(players=game.scoreboard()))
