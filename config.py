import os
from dotenv import load_dotenv

load_dotenv()


def _env_bool(name, default):
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY', 'riddle-hunt-secret-change-me')
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Use SQLite for development
    SQLALCHEMY_DATABASE_URI = 'sqlite:///riddlehunt.db'

    # Hosted PostgreSQL
    if os.environ.get('DATABASE_URL'):
        SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL').replace('postgres://', 'postgresql://')

    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')

    # Object storage buckets live under this directory
    STORAGE_ROOT = os.environ.get('STORAGE_ROOT', os.path.join(os.getcwd(), 'storage'))
    SIGNED_URL_EXPIRY_SECONDS = int(os.environ.get('SIGNED_URL_EXPIRY_SECONDS', 24 * 60 * 60))
    MAX_CONTENT_LENGTH = int(os.environ.get('MAX_CONTENT_LENGTH', 10 * 1024 * 1024))

    # Hint reveal delays, counted from UserProgress.start_time
    HINT1_DELAY_SECONDS = int(os.environ.get('HINT1_DELAY_SECONDS', 10 * 60))
    HINT2_DELAY_SECONDS = int(os.environ.get('HINT2_DELAY_SECONDS', 15 * 60))

    ANSWER_STRIP_WHITESPACE = _env_bool('ANSWER_STRIP_WHITESPACE', True)

    SUBMISSIONS_PAGE_SIZE = int(os.environ.get('SUBMISSIONS_PAGE_SIZE', 10))
    LEADERBOARD_LIMIT = int(os.environ.get('LEADERBOARD_LIMIT', 10))

    REQUIRE_EMAIL_CONFIRMATION = _env_bool('REQUIRE_EMAIL_CONFIRMATION', True)
    CONFIRMATION_MAX_AGE = int(os.environ.get('CONFIRMATION_MAX_AGE', 3 * 24 * 60 * 60))

    # Display-only countdown, ISO-8601 e.g. 2026-11-01T18:00:00
    COUNTDOWN_TARGET = os.environ.get('COUNTDOWN_TARGET')

    ADMIN_EMAIL = os.environ.get('ADMIN_EMAIL')
    ADMIN_PASSWORD = os.environ.get('ADMIN_PASSWORD')
