from functools import wraps

from flask import current_app, request
from flask_socketio import emit, join_room, leave_room

from buzzline import db, socketio
from buzzline import events
from buzzline.errors import BuzzlineError, BuzzRejected, NotAuthorized, PlayerNotFound, ValidationError
from buzzline.models import Player
from buzzline.services import arbitration, broadcaster, lobby, presence, questions, scoring
from buzzline.services.broadcaster import NAMESPACE
from buzzline.services.presence import ROLE_MC, ROLE_PLAYER, ROLE_SCREEN


def _get_sid() -> str:
    # request.sid exists in Socket.IO context
    return request.sid  # type: ignore


def _acknowledge(handler):
    """Turn a handler's return value or engine error into the ack payload."""
    @wraps(handler)
    def wrapper(data=None):
        try:
            result = handler(data if isinstance(data, dict) else {})
        except BuzzlineError as exc:
            current_app.logger.info(f"[ws-rejected] event={handler.__name__} sid={_get_sid()} error={exc.code}")
            return {'success': False, **exc.to_dict()}
        payload = {'success': True}
        payload.update(result or {})
        return payload
    return wrapper


def _context(role=None) -> presence.ConnectionContext:
    ctx = presence.registry.get(_get_sid())
    if ctx is None:
        raise NotAuthorized('Send auth:connect first')
    if role == ROLE_MC and not ctx.is_mc:
        raise NotAuthorized('Only the MC may do this')
    if role == ROLE_PLAYER and (ctx.role != ROLE_PLAYER or ctx.player_id is None):
        raise NotAuthorized('Only players may buzz')
    return ctx


def _send_snapshot(ctx: presence.ConnectionContext) -> None:
    game = lobby.get_game(ctx.game_id)
    broadcaster.send_to_connection(ctx.sid, broadcaster.build_snapshot(game, include_answer=ctx.is_mc))


def _leave_rooms(ctx: presence.ConnectionContext) -> None:
    leave_room(broadcaster.game_room(ctx.game_id))
    if ctx.role == ROLE_MC:
        leave_room(broadcaster.mc_room(ctx.game_id))
    else:
        leave_room(broadcaster.public_room(ctx.game_id))


def handle_connect(auth=None):
    emit('connected', {'message': f'Connected to {NAMESPACE}'})


def handle_disconnect(reason=None):
    sid = _get_sid()
    try:
        presence.handle_detach(sid)
    except BuzzlineError as exc:
        current_app.logger.warning(f"[ws-disconnect-failed] sid={sid} error={exc.code}")


@_acknowledge
def handle_auth_connect(data):
    """Attach this connection to a game as MC, player or public screen."""
    game = lobby.get_game_by_code(data.get('game_code'))
    role = data.get('role')
    authority = player = None
    if role == ROLE_MC:
        authority = lobby.authorize_mc(game, data.get('token'))
    elif role == ROLE_PLAYER:
        player = lobby.authorize_player(game, data.get('player_id'), data.get('token'))
    elif role != ROLE_SCREEN:
        raise ValidationError('role must be one of mc, player, screen')

    sid = _get_sid()
    previous = presence.registry.get(sid)
    if previous is not None and (previous.game_id, previous.role, previous.player_id) != (
        game.id, role, player.id if player else None
    ):
        _leave_rooms(previous)
        presence.handle_detach(sid)

    join_room(broadcaster.game_room(game.id))
    join_room(broadcaster.mc_room(game.id) if role == ROLE_MC else broadcaster.public_room(game.id))
    if role == ROLE_MC:
        ctx = presence.attach_mc(sid, game, authority)
    elif role == ROLE_PLAYER:
        ctx = presence.attach_player(sid, game, player)
    else:
        ctx = presence.attach_screen(sid, game)

    _send_snapshot(ctx)
    return {'game_id': game.id, 'role': role, 'player_id': ctx.player_id}


@_acknowledge
def handle_state_request(data):
    """Reconnecting clients ask for the latest committed state instead of replaying events."""
    _send_snapshot(_context())
    return {}


@_acknowledge
def handle_player_buzz(data):
    ctx = _context(ROLE_PLAYER)
    game = lobby.get_game(ctx.game_id)
    player = db.session.get(Player, ctx.player_id)
    if player is None:
        raise PlayerNotFound()
    try:
        outcome = arbitration.attempt_buzz(game, data.get('question_id'), player, data.get('client_timestamp'))
    except BuzzRejected as exc:
        broadcaster.send_to_connection(ctx.sid, events.BuzzRejected(question_id=exc.question_id, reason=exc.reason))
        raise
    return {'result': outcome.result, 'player_id': outcome.player_id, 'player_name': outcome.player_name}


@_acknowledge
def handle_open_buzz(data):
    ctx = _context(ROLE_MC)
    game = lobby.get_game(ctx.game_id)
    state = questions.open_question(game, data.get('question_id'), ctx.authority)
    return {'question_id': state.question_id, 'status': state.status}


@_acknowledge
def handle_judge_buzz(data):
    ctx = _context(ROLE_MC)
    game = lobby.get_game(ctx.game_id)
    result = scoring.judge(game, data.get('question_id'), data.get('player_id'),
                           data.get('is_correct'), ctx.authority)
    return {
        'is_correct': result.is_correct,
        'points': result.points,
        'penalty': result.penalty,
        'status': result.status,
    }


@_acknowledge
def handle_next_question(data):
    ctx = _context(ROLE_MC)
    game = lobby.get_game(ctx.game_id)
    question = questions.next_question(game, ctx.authority)
    return {'current_question_index': question.index, 'question': question.to_dict(include_answer=True)}


@_acknowledge
def handle_unlock_player(data):
    ctx = _context(ROLE_MC)
    game = lobby.get_game(ctx.game_id)
    unlocked = scoring.unlock_player(game, data.get('question_id'), data.get('player_id'), ctx.authority)
    return {'unlocked': unlocked}


@_acknowledge
def handle_resume(data):
    ctx = _context(ROLE_MC)
    game = lobby.resume_game(lobby.get_game(ctx.game_id), ctx.authority)
    return {'status': game.status}


@_acknowledge
def handle_finish_game(data):
    ctx = _context(ROLE_MC)
    game = lobby.finish_game(lobby.get_game(ctx.game_id), ctx.authority)
    return {'status': game.status}


def register_socketio_handlers() -> None:
    """Register Socket.IO event handlers on the '/ws' namespace."""
    socketio.on_event('connect', handle_connect, namespace=NAMESPACE)
    socketio.on_event('disconnect', handle_disconnect, namespace=NAMESPACE)
    socketio.on_event('auth:connect', handle_auth_connect, namespace=NAMESPACE)
    socketio.on_event('state:request', handle_state_request, namespace=NAMESPACE)
    socketio.on_event('player:buzz', handle_player_buzz, namespace=NAMESPACE)
    socketio.on_event('mc:open_buzz', handle_open_buzz, namespace=NAMESPACE)
    socketio.on_event('mc:judge_buzz', handle_judge_buzz, namespace=NAMESPACE)
    socketio.on_event('mc:next_question', handle_next_question, namespace=NAMESPACE)
    socketio.on_event('mc:unlock_player', handle_unlock_player, namespace=NAMESPACE)
    socketio.on_event('mc:resume', handle_resume, namespace=NAMESPACE)
    socketio.on_event('mc:finish_game', handle_finish_game, namespace=NAMESPACE)
