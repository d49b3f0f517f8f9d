import io

import pytest
from werkzeug.datastructures import FileStorage
from werkzeug.security import generate_password_hash

from app import create_app
from config import Config
from models import db, utcnow, Admin, Riddle, Team, User

PASSWORD = 'secret123'


@pytest.fixture
def app(tmp_path):
    class TestConfig(Config):
        TESTING = True
        SECRET_KEY = 'test-secret'
        SQLALCHEMY_DATABASE_URI = f"sqlite:///{tmp_path / 'test.db'}"
        STORAGE_ROOT = str(tmp_path / 'storage')
        HINT1_DELAY_SECONDS = 60
        HINT2_DELAY_SECONDS = 120
        ANSWER_STRIP_WHITESPACE = True
        SUBMISSIONS_PAGE_SIZE = 10
        LEADERBOARD_LIMIT = 10
        SIGNED_URL_EXPIRY_SECONDS = 24 * 60 * 60
        REQUIRE_EMAIL_CONFIRMATION = False
        COUNTDOWN_TARGET = None
        ADMIN_EMAIL = None
        ADMIN_PASSWORD = None

    app = create_app(TestConfig)
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def ctx(app):
    with app.app_context():
        yield


@pytest.fixture
def client(app):
    return app.test_client()


def create_user(email, name='Player', is_team=False, team_name=None, admin=False, confirmed=True):
    user = User(
        name=team_name if is_team else name,
        email=email,
        password=generate_password_hash(PASSWORD),
        is_team=is_team,
        confirmed_at=utcnow() if confirmed else None,
    )
    db.session.add(user)
    db.session.flush()
    if is_team:
        db.session.add(Team(name=team_name, user_id=user.id))
    if admin:
        db.session.add(Admin(user_id=user.id))
    db.session.commit()
    return user


def create_riddles(answers=('gnome', 'troll', 'murloc'), order_numbers=None):
    order_numbers = order_numbers or range(1, len(answers) + 1)
    riddles = []
    for order_number, answer in zip(order_numbers, answers):
        riddle = Riddle(
            order_number=order_number,
            question=f'Riddle number {order_number}?',
            answer=answer,
            hint1=f'First hint for {answer}',
            hint2=f'Second hint for {answer}',
        )
        db.session.add(riddle)
        riddles.append(riddle)
    db.session.commit()
    return riddles


def image_file(filename='proof.jpg', data=b'\xff\xd8\xff\xe0fake-jpeg'):
    return FileStorage(stream=io.BytesIO(data), filename=filename, content_type='image/jpeg')


def login(client, email, password=PASSWORD):
    return client.post('/login', data={'email': email, 'password': password})
