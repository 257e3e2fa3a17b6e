from flask import Blueprint, jsonify, request, current_app
from buzzline.errors import BuzzlineError, McNotConnected, NotAuthorized, ValidationError
from buzzline.models import BuzzEvent
from buzzline.services import broadcaster, lobby, presence, questions, scoring


games = Blueprint('games', __name__)


@games.errorhandler(BuzzlineError)
def handle_engine_error(exc):
    current_app.logger.info(f"[http-rejected] path={request.path} error={exc.code}")
    return jsonify(exc.to_dict()), exc.http_status


def _json_body():
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError('Request body must be a JSON object')
    return data


def _mc_token():
    return (request.headers.get('X-MC-Token')
            or request.args.get('mc_token')
            or _json_body().get('mc_token'))


def _player_token():
    return request.headers.get('X-Player-Token') or request.args.get('token')


def _mc(game_code):
    """Load a game and verify the caller holds its MC credential."""
    game = lobby.get_game_by_code(game_code)
    token = _mc_token()
    if not token:
        raise NotAuthorized('MC token is required')
    return game, lobby.authorize_mc(game, token)


@games.route('', methods=['POST'])
def create_game():
    data = _json_body()
    game, mc_token = lobby.create_game(
        data.get('questions'),
        allow_negative_points=data.get('allow_negative_points', False),
    )
    return jsonify({
        'game_id': game.id,
        'game_code': game.game_code,
        'mc_token': mc_token,
        'questions': [q.to_dict(include_answer=True) for q in game.questions],
    }), 201


@games.route('/<string:game_code>', methods=['GET'])
def get_game(game_code):
    game = lobby.get_game_by_code(game_code)
    return jsonify(game.to_dict(include_answers=False))


@games.route('/<string:game_code>/state', methods=['GET'])
def get_game_state(game_code):
    game, _ = _mc(game_code)
    payload = game.to_dict(include_answers=True)
    payload['snapshot'] = broadcaster.build_snapshot(game, include_answer=True).payload()
    payload['question_states'] = [q.state.to_dict() for q in game.questions if q.state]
    return jsonify(payload)


@games.route('/<string:game_code>/questions', methods=['PUT'])
def replace_questions(game_code):
    game, authority = _mc(game_code)
    data = _json_body()
    if 'questions' not in data:
        raise ValidationError('questions is required')
    game = lobby.replace_questions(game, data.get('questions'), authority)
    return jsonify({'questions_count': len(game.questions)})


@games.route('/<string:game_code>/players/join', methods=['POST'])
def join_game(game_code):
    game = lobby.get_game_by_code(game_code)
    player, token = lobby.join_game(game, _json_body().get('name'))
    return jsonify({
        'player_id': player.id,
        'player_token': token,
        'name': player.name,
        'game_code': game.game_code,
    }), 201


@games.route('/<string:game_code>/players/<int:player_id>', methods=['GET'])
def get_player(game_code, player_id):
    game = lobby.get_game_by_code(game_code)
    player = lobby.authorize_player(game, player_id, _player_token())
    payload = player.to_dict()
    payload['game'] = {
        'game_code': game.game_code,
        'status': game.status,
        'current_question_index': game.current_question_index,
    }
    return jsonify(payload)


@games.route('/<string:game_code>/start', methods=['POST'])
def start_game(game_code):
    game, authority = _mc(game_code)
    game = lobby.start_game(game, authority)
    return jsonify({'status': game.status})


@games.route('/<string:game_code>/finish', methods=['POST'])
def finish_game(game_code):
    game, authority = _mc(game_code)
    game = lobby.finish_game(game, authority)
    return jsonify({'status': game.status})


@games.route('/<string:game_code>/resume', methods=['POST'])
def resume_game(game_code):
    game, authority = _mc(game_code)
    # A paused game resumes only while an MC is attached
    if presence.registry.mc_count(game.id) == 0:
        raise McNotConnected()
    game = lobby.resume_game(game, authority)
    return jsonify({'status': game.status})


@games.route('/<string:game_code>/questions/<int:question_id>/open', methods=['POST'])
def open_question(game_code, question_id):
    game, authority = _mc(game_code)
    state = questions.open_question(game, question_id, authority)
    return jsonify(state.to_dict())


@games.route('/<string:game_code>/questions/<int:question_id>/judge', methods=['POST'])
def judge_buzz(game_code, question_id):
    game, authority = _mc(game_code)
    data = _json_body()
    result = scoring.judge(game, question_id, data.get('player_id'), data.get('is_correct'), authority)
    return jsonify({
        'is_correct': result.is_correct,
        'player_id': result.player_id,
        'points': result.points,
        'penalty': result.penalty,
        'status': result.status,
    })


@games.route('/<string:game_code>/questions/<int:question_id>/unlock', methods=['POST'])
def unlock_player(game_code, question_id):
    game, authority = _mc(game_code)
    unlocked = scoring.unlock_player(game, question_id, _json_body().get('player_id'), authority)
    return jsonify({'unlocked': unlocked})


@games.route('/<string:game_code>/next', methods=['POST'])
def next_question(game_code):
    game, authority = _mc(game_code)
    question = questions.next_question(game, authority)
    return jsonify({
        'current_question_index': question.index,
        'question': question.to_dict(include_answer=True),
    })


@games.route('/<string:game_code>/scoreboard', methods=['GET'])
def get_scoreboard(game_code):
    game = lobby.get_game_by_code(game_code)
    return jsonify(game.scoreboard())


@games.route('/<string:game_code>/buzz-events', methods=['GET'])
def list_buzz_events(game_code):
    game, _ = _mc(game_code)
    query = BuzzEvent.query.filter_by(game_id=game.id)
    question_id = request.args.get('question_id', type=int)
    if question_id is not None:
        query = query.filter_by(question_id=question_id)
    return jsonify([e.to_dict() for e in query.order_by(BuzzEvent.id).all()])
