"""Game bootstrap and lifecycle: create, join, start, pause, resume, finish.

Also the credential checks every MC operation goes through. A verified MC
token becomes an ``McAuthority`` and engine operations accept nothing else.
"""
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from flask import current_app
from sqlalchemy.exc import IntegrityError

from buzzline import db
from buzzline import events
from buzzline.errors import (
    GameNotFound,
    GameNotRunning,
    NameTaken,
    NotAuthorized,
    NotInLobby,
    PlayerNotFound,
    StoreFailure,
    ValidationError,
)
from buzzline.models import (
    Game,
    GameStatus,
    Player,
    Question,
    QuestionState,
    QuestionStatus,
    generate_game_code,
    generate_token,
    utcnow,
)
from buzzline.services import broadcaster
from buzzline.store import atomic, compare_and_swap

NAME_MIN_LENGTH = 2
NAME_MAX_LENGTH = 30
MIN_TIME_LIMIT_SEC = 5


@dataclass(frozen=True)
class McAuthority:
    game_id: int


# ---- Lookups & credentials ----

def get_game_by_code(code) -> Game:
    if not code or not isinstance(code, str):
        raise ValidationError('game_code is required')
    game = Game.query.filter_by(game_code=code.strip().upper()).first()
    if not game:
        raise GameNotFound()
    return game


def get_game(game_id) -> Game:
    game = db.session.get(Game, game_id)
    if not game:
        raise GameNotFound()
    return game


def authorize_mc(game: Game, token) -> McAuthority:
    if not game.check_mc_token(token):
        raise NotAuthorized('Invalid MC token')
    return McAuthority(game_id=game.id)


def require_mc(game: Game, authority: Optional[McAuthority]) -> None:
    if not isinstance(authority, McAuthority) or authority.game_id != game.id:
        raise NotAuthorized('Only the MC may do this')


def authorize_player(game: Game, player_id, token) -> Player:
    try:
        player_id = int(player_id)
    except (TypeError, ValueError):
        raise ValidationError('player_id is required')
    player = Player.query.filter_by(id=player_id, game_id=game.id).first()
    if not player:
        raise PlayerNotFound()
    if not player.check_token(token):
        raise NotAuthorized('Invalid player token')
    return player


def require_running(game: Game) -> None:
    if game.status != GameStatus.RUNNING:
        raise GameNotRunning(f'Game is {game.status}')


# ---- Validation ----

def parse_questions(raw) -> List[Dict[str, Any]]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ValidationError('questions must be a list')
    default_points = int(current_app.config.get('DEFAULT_QUESTION_POINTS', 1))
    parsed = []
    for position, item in enumerate(raw):
        if not isinstance(item, dict):
            raise ValidationError(f'questions[{position}] must be an object')
        text = item.get('text')
        if not isinstance(text, str) or not text.strip():
            raise ValidationError(f'questions[{position}].text is required')
        answer = item.get('answer')
        if answer is not None and not isinstance(answer, str):
            raise ValidationError(f'questions[{position}].answer must be a string')
        points = item.get('points', default_points)
        if points is None:
            points = default_points
        if isinstance(points, bool) or not isinstance(points, int) or points < 1:
            raise ValidationError(f'questions[{position}].points must be a positive integer')
        time_limit = item.get('time_limit')
        if time_limit is not None and (
            isinstance(time_limit, bool) or not isinstance(time_limit, int) or time_limit < MIN_TIME_LIMIT_SEC
        ):
            raise ValidationError(f'questions[{position}].time_limit must be an integer >= {MIN_TIME_LIMIT_SEC}')
        parsed.append({'text': text.strip(), 'answer': answer, 'points': points, 'time_limit': time_limit})
    return parsed


def parse_player_name(raw) -> str:
    if not isinstance(raw, str):
        raise ValidationError('name is required')
    name = raw.strip()
    if not NAME_MIN_LENGTH <= len(name) <= NAME_MAX_LENGTH:
        raise ValidationError(f'name must be {NAME_MIN_LENGTH} to {NAME_MAX_LENGTH} characters')
    return name



# ---- Bootstrap ----

def _add_questions(game: Game, questions: List[Dict[str, Any]]) -> None:
    """Create questions and their IDLE arbitration states. ``game`` must be flushed."""
    for index, q in enumerate(questions):
        question = Question(game_id=game.id, index=index, text=q['text'], answer=q['answer'],
                            points=q['points'], time_limit=q['time_limit'])
        question.state = QuestionState(game_id=game.id, status=QuestionStatus.IDLE)
        db.session.add(question)


def create_game(questions=None, allow_negative_points=False) -> Tuple[Game, str]:
    """Create a lobby. Returns the game and the plain MC token, which is never stored."""
    parsed = parse_questions(questions)
    if not isinstance(allow_negative_points, bool):
        raise ValidationError('allow_negative_points must be a boolean')
    mc_token = generate_token()
    with atomic('create_game'):
        game = Game(
            game_code=generate_game_code(int(current_app.config.get('GAME_CODE_LENGTH', 6))),
            status=GameStatus.LOBBY,
            allow_negative_points=allow_negative_points,
            current_question_index=0,
        )
        game.set_mc_token(mc_token)
        db.session.add(game)
        db.session.flush()
        _add_questions(game, parsed)
    current_app.logger.info(f"[game-created] game={game.id} code={game.game_code} questions={len(parsed)}")
    return game, mc_token


def replace_questions(game: Game, questions, authority: Optional[McAuthority]) -> Game:
    require_mc(game, authority)
    parsed = parse_questions(questions)
    with atomic('replace_questions'):
        if game.status != GameStatus.LOBBY:
            raise NotInLobby('Questions cannot change after the game has started')
        for question in list(game.questions):
            game.questions.remove(question)
        db.session.flush()
        _add_questions(game, parsed)
    current_app.logger.info(f"[questions-replaced] game={game.id} questions={len(parsed)}")
    broadcaster.publish_snapshot(game)
    return game


def join_game(game: Game, name) -> Tuple[Player, str]:
    """Add a player to a lobby. Returns the player and the plain player token."""
    name = parse_player_name(name)
    if game.status != GameStatus.LOBBY:
        raise NotInLobby('This game is not accepting players')
    if Player.query.filter_by(game_id=game.id, name_key=name.lower()).first():
        raise NameTaken()
    token = generate_token()
    player = Player(game_id=game.id, name=name, name_key=name.lower(), score=0, is_connected=False)
    player.set_token(token)
    try:
        with atomic('join_game'):
            db.session.add(player)
    except StoreFailure as exc:
        # Two joins racing for the same name: the unique index decides
        if isinstance(exc.__cause__, IntegrityError):
            raise NameTaken() from exc
        raise
    current_app.logger.info(f"[player-joined] game={game.id} player={player.id} name={player.name}")
    broadcaster.publish_snapshot(game)
    return player, token


# ---- Lifecycle ----

def start_game(game: Game, authority: Optional[McAuthority]) -> Game:
    require_mc(game, authority)
    if game.status != GameStatus.LOBBY:
        raise NotInLobby('Game has already started')
    if not game.questions:
        raise ValidationError('Add at least one question before starting')
    min_players = int(current_app.config.get('MIN_PLAYERS', 1))
    if len(game.players) < min_players:
        raise ValidationError(f'At least {min_players} player(s) are required to start')
    with atomic('start_game'):
        changed = compare_and_swap(
            Game, {'id': game.id}, {'status': GameStatus.LOBBY},
            {'status': GameStatus.RUNNING, 'started_at': utcnow(), 'current_question_index': 0},
        )
        if not changed:
            raise NotInLobby('Game has already started')
    current_app.logger.info(f"[game-started] game={game.id} players={len(game.players)}")
    broadcaster.publish(game.id, events.GameStarted(status=GameStatus.RUNNING))
    broadcaster.publish_snapshot(game)
    return game


def finish_game(game: Game, authority: Optional[McAuthority]) -> Game:
    require_mc(game, authority)
    with atomic('finish_game'):
        changed = compare_and_swap(
            Game, {'id': game.id}, None,
            {'status': GameStatus.FINISHED, 'finished_at': utcnow(), 'paused_from': None},
            where=(Game.status != GameStatus.FINISHED,),
        )
    if not changed:
        # Finishing twice is harmless
        return game
    current_app.logger.info(f"[game-finished] game={game.id}")
    broadcaster.publish(game.id, events.GameFinished(status=GameStatus.FINISHED))
    broadcaster.publish_scoreboard(game)
    broadcaster.publish_snapshot(game)
    return game


def pause_game(game_id: int, reason: str) -> bool:
    """Pause a game whatever its status, except FINISHED. Returns True when paused now."""
    with atomic('pause_game'):
        # paused_from is assigned from the pre-update status in the same statement
        changed = compare_and_swap(
            Game, {'id': game_id}, None,
            {'status': GameStatus.PAUSED, 'paused_from': Game.status},
            where=(Game.status.notin_([GameStatus.PAUSED, GameStatus.FINISHED]),),
        )
    if not changed:
        return False
    current_app.logger.info(f"[game-paused] game={game_id} reason={reason}")
    broadcaster.publish(game_id, events.GamePaused(reason=reason))
    broadcaster.publish_snapshot(get_game(game_id))
    return True


def resume_game(game: Game, authority: Optional[McAuthority]) -> Game:
    require_mc(game, authority)
    if game.status != GameStatus.PAUSED:
        raise GameNotRunning('Game is not paused')
    restored = game.paused_from or GameStatus.RUNNING
    with atomic('resume_game'):
        changed = compare_and_swap(
            Game, {'id': game.id}, {'status': GameStatus.PAUSED},
            {'status': restored, 'paused_from': None},
        )
        if not changed:
            raise GameNotRunning('Game is not paused')
    current_app.logger.info(f"[game-resumed] game={game.id} status={restored}")
    broadcaster.publish(game.id, events.GameResumed(status=restored))
    broadcaster.publish_snapshot(game)
    return game
