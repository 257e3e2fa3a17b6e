from buzzline import db, bcrypt
from datetime import datetime, timezone
import secrets
import string


def utcnow():
    return datetime.now(timezone.utc)


class GameStatus:
    LOBBY = 'lobby'
    RUNNING = 'running'
    PAUSED = 'paused'
    FINISHED = 'finished'


class QuestionStatus:
    IDLE = 'idle'
    OPEN = 'open'
    LOCKED = 'locked'
    RESOLVED = 'resolved'


class BuzzResult:
    WINNER = 'winner'
    TOO_LATE = 'too_late'
    REJECTED_NOT_OPEN = 'rejected_not_open'
    REJECTED_LOCKED = 'rejected_locked'


CODE_ALPHABET = string.ascii_uppercase + string.digits
TOKEN_ALPHABET = string.ascii_letters + string.digits


def generate_token(length=32):
    return ''.join(secrets.choice(TOKEN_ALPHABET) for _ in range(length))


def generate_game_code(length=6):
    """Generate a unique, short game code."""
    while True:
        code = ''.join(secrets.choice(CODE_ALPHABET) for _ in range(length))
        if not Game.query.filter_by(game_code=code).first():
            return code


question_state_locked_player = db.Table(
    'question_state_locked_player',
    db.Column('question_state_id', db.Integer, db.ForeignKey('question_state.id'), primary_key=True),
    db.Column('player_id', db.Integer, db.ForeignKey('player.id'), primary_key=True),
)


class Game(db.Model):
    __tablename__ = 'game'
    id = db.Column(db.Integer, primary_key=True)
    game_code = db.Column(db.String(12), unique=True, nullable=False, index=True)
    mc_token_hash = db.Column(db.String(128), nullable=False)
    status = db.Column(db.String(16), nullable=False, default=GameStatus.LOBBY)
    # Status to restore when a paused game is resumed
    paused_from = db.Column(db.String(16), nullable=True)
    allow_negative_points = db.Column(db.Boolean, nullable=False, default=False)
    current_question_index = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    started_at = db.Column(db.DateTime(timezone=True), nullable=True)
    finished_at = db.Column(db.DateTime(timezone=True), nullable=True)

    questions = db.relationship('Question', back_populates='game', order_by='Question.index',
                                cascade='all, delete-orphan')
    players = db.relationship('Player', back_populates='game', order_by='Player.id')

    def set_mc_token(self, token):
        self.mc_token_hash = bcrypt.generate_password_hash(token).decode('utf-8')

    def check_mc_token(self, token):
        if not token or not self.mc_token_hash:
            return False
        return bcrypt.check_password_hash(self.mc_token_hash, token)

    @property
    def current_question(self):
        if 0 <= self.current_question_index < len(self.questions):
            return self.questions[self.current_question_index]
        return None

    def scoreboard(self):
        ranked = sorted(self.players, key=lambda p: (-p.score, p.id))
        return [{'id': p.id, 'name': p.name, 'score': p.score} for p in ranked]

    def to_dict(self, include_answers=False, include_players=True):
        data = {
            'id': self.id,
            'game_code': self.game_code,
            'status': self.status,
            'allow_negative_points': self.allow_negative_points,
            'current_question_index': self.current_question_index,
            'questions': [q.to_dict(include_answer=include_answers) for q in self.questions],
        }
        if include_players:
            data['players'] = [p.to_dict() for p in sorted(self.players, key=lambda p: (-p.score, p.id))]
        return data


class Question(db.Model):
    __tablename__ = 'question'
    __table_args__ = (db.UniqueConstraint('game_id', 'index', name='uq_question_game_index'),)
    id = db.Column(db.Integer, primary_key=True)
    game_id = db.Column(db.Integer, db.ForeignKey('game.id'), nullable=False)
    index = db.Column(db.Integer, nullable=False)
    text = db.Column(db.Text, nullable=False)
    answer = db.Column(db.Text, nullable=True)
    points = db.Column(db.Integer, nullable=False, default=1)
    time_limit = db.Column(db.Integer, nullable=True)  # seconds

    game = db.relationship('Game', back_populates='questions')
    state = db.relationship('QuestionState', back_populates='question', uselist=False,
                            cascade='all, delete-orphan')

    def to_dict(self, include_answer=False):
        data = {
            'id': self.id,
            'index': self.index,
            'text': self.text,
            'points': self.points,
            'time_limit': self.time_limit,
        }
        if include_answer:
            data['answer'] = self.answer
        return data


class QuestionState(db.Model):
    __tablename__ = 'question_state'
    __table_args__ = (
        db.UniqueConstraint('game_id', 'question_id', name='uq_question_state_game_question'),
        # A winner exists exactly while the question is locked
        db.CheckConstraint(
            "(status = 'locked' AND winner_player_id IS NOT NULL) OR "
            "(status != 'locked' AND winner_player_id IS NULL)",
            name='ck_question_state_winner_iff_locked',
        ),
    )
    id = db.Column(db.Integer, primary_key=True)
    game_id = db.Column(db.Integer, db.ForeignKey('game.id'), nullable=False, index=True)
    question_id = db.Column(db.Integer, db.ForeignKey('question.id'), nullable=False)
    status = db.Column(db.String(16), nullable=False, default=QuestionStatus.IDLE)
    opened_at = db.Column(db.DateTime(timezone=True), nullable=True)
    locked_at = db.Column(db.DateTime(timezone=True), nullable=True)
    resolved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    winner_player_id = db.Column(db.Integer, db.ForeignKey('player.id'), nullable=True)
    resolved_by_player_id = db.Column(db.Integer, db.ForeignKey('player.id'), nullable=True)

    question = db.relationship('Question', back_populates='state')
    winner = db.relationship('Player', foreign_keys=[winner_player_id])
    locked_players = db.relationship('Player', secondary=question_state_locked_player, order_by='Player.id')

    def is_player_locked(self, player_id):
        return any(p.id == player_id for p in self.locked_players)

    def to_dict(self):
        return {
            'question_id': self.question_id,
            'status': self.status,
            'opened_at': self.opened_at.isoformat() if self.opened_at else None,
            'locked_at': self.locked_at.isoformat() if self.locked_at else None,
            'resolved_at': self.resolved_at.isoformat() if self.resolved_at else None,
            'winner': {'id': self.winner.id, 'name': self.winner.name} if self.winner else None,
            'resolved_by_player_id': self.resolved_by_player_id,
            'locked_player_ids': [p.id for p in self.locked_players],
        }


class Player(db.Model):
    __tablename__ = 'player'
    __table_args__ = (db.UniqueConstraint('game_id', 'name_key', name='uq_player_game_name_key'),)
    id = db.Column(db.Integer, primary_key=True)
    game_id = db.Column(db.Integer, db.ForeignKey('game.id'), nullable=False, index=True)
    name = db.Column(db.String(30), nullable=False)
    # Lowercased name, backs the case-insensitive uniqueness rule
    name_key = db.Column(db.String(30), nullable=False)
    token_hash = db.Column(db.String(128), nullable=False)
    score = db.Column(db.Integer, nullable=False, default=0)
    is_connected = db.Column(db.Boolean, nullable=False, default=False)
    joined_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    game = db.relationship('Game', back_populates='players')

    def set_token(self, token):
        self.token_hash = bcrypt.generate_password_hash(token).decode('utf-8')

    def check_token(self, token):
        if not token or not self.token_hash:
            return False
        return bcrypt.check_password_hash(self.token_hash, token)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'score': self.score,
            'is_connected': self.is_connected,
        }


class BuzzEvent(db.Model):
    __tablename__ = 'buzz_event'
    id = db.Column(db.Integer, primary_key=True)
    game_id = db.Column(db.Integer, db.ForeignKey('game.id'), nullable=False, index=True)
    question_id = db.Column(db.Integer, db.ForeignKey('question.id'), nullable=False)
    player_id = db.Column(db.Integer, db.ForeignKey('player.id'), nullable=False)
    client_timestamp = db.Column(db.DateTime(timezone=True), nullable=True)
    server_timestamp = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    result = db.Column(db.String(32), nullable=False)

    def to_dict(self):
        return {
            'id': self.id,
            'question_id': self.question_id,
            'player_id': self.player_id,
            'client_timestamp': self.client_timestamp.isoformat() if self.client_timestamp else None,
            'server_timestamp': self.server_timestamp.isoformat() if self.server_timestamp else None,
            'result': self.result,
        }
