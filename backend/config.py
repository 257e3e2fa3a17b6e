import os

class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'you-will-never-guess'
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or 'sqlite:///buzzline.db'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    # Comma separated list of frontend origins allowed for HTTP and websockets
    CORS_ORIGINS = [o.strip() for o in os.environ.get(
        'CORS_ORIGINS', 'http://localhost:5173,http://127.0.0.1:5173,http://localhost:3001'
    ).split(',') if o.strip()]
    # Lobby rules
    MIN_PLAYERS = int(os.environ.get('MIN_PLAYERS', '1'))
    DEFAULT_QUESTION_POINTS = int(os.environ.get('DEFAULT_QUESTION_POINTS', '1'))
    GAME_CODE_LENGTH = int(os.environ.get('GAME_CODE_LENGTH', '6'))
    # Cost factor for hashing MC and player credentials
    BCRYPT_LOG_ROUNDS = int(os.environ.get('BCRYPT_LOG_ROUNDS', '10'))
    # Seconds to wait after the last MC socket drops before pausing. 0 pauses immediately.
    MC_DISCONNECT_GRACE_SEC = float(os.environ.get('MC_DISCONNECT_GRACE_SEC', '0'))
