from flask import Flask
from flask_sqlalchemy import SQLAlchemy
from flask_bcrypt import Bcrypt
from flask_cors import CORS
from flask_migrate import Migrate
from flask_socketio import SocketIO
import click
from config import Config

db = SQLAlchemy()
bcrypt = Bcrypt()
migrate = Migrate()
socketio = SocketIO(async_mode=None)

def create_app(config_class=Config):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)
    allowed_origins = flask_app.config.get('CORS_ORIGINS') or []

    db.init_app(flask_app)
    bcrypt.init_app(flask_app)
    migrate.init_app(flask_app, db)
    CORS(flask_app, supports_credentials=True, origins=allowed_origins)

    # Initialize Socket.IO after app is created
    socketio.init_app(flask_app, cors_allowed_origins=allowed_origins)

    from buzzline.main import main
    flask_app.register_blueprint(main)

    from buzzline.api.games import games
    flask_app.register_blueprint(games, url_prefix='/api/games')

    # Importing here ensures the handlers bind to the initialized socketio instance
    from buzzline.socketio_events import register_socketio_handlers
    register_socketio_handlers()

    @click.command('db-reset')
    def db_reset_command():
        """Drops, recreates, and seeds the database with a demo game."""
        from buzzline.services.lobby import create_game
        with flask_app.app_context():
            db.drop_all()
            db.create_all()

            game, mc_token = create_game(
                [
                    {'text': 'What is the capital of France?', 'answer': 'Paris', 'points': 5},
                    {'text': 'How many legs does a spider have?', 'answer': '8', 'points': 3},
                    {'text': 'Which planet is known as the red planet?', 'answer': 'Mars', 'points': 2},
                ],
                allow_negative_points=False,
            )
            print('Database has been reset and seeded!')
            print(f'Demo game code: {game.game_code}')
            print(f'Demo MC token:  {mc_token}')

    flask_app.cli.add_command(db_reset_command)

    return flask_app
