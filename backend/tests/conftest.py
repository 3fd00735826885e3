import os
import sys
import pytest

# Ensure the backend root (containing the `quickfire` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from config import Config
from quickfire import create_app, db, socketio
from quickfire.services.quiz import clock as clock_module

# 2023-11-15 12:00:00 UTC, a Wednesday: clear of every window boundary
T0 = 1700049600.0

TRUE_FALSE_ARTIST = 'tf-artist'
EMPTY_ARTIST = 'empty-artist'
FAN_ARTIST = 'fan-artist'


def question_provider(artist_id, count):
    if artist_id == EMPTY_ARTIST:
        return []
    if artist_id == TRUE_FALSE_ARTIST:
        return [
            {'id': f'tf{i}', 'prompt': f'Statement {i}', 'choices': ['True', 'False'], 'answer': 'True', 'difficulty': 'easy'}
            for i in range(count)
        ]
    return [
        {'id': f'{artist_id}-q{i}', 'prompt': f'Question {i}', 'choices': ['a', 'b', 'c', 'd'], 'answer': 'a', 'difficulty': 'easy'}
        for i in range(count)
    ]


def listening_hours_provider(user_id, artist_id):
    return 60.0 if artist_id == FAN_ARTIST else 0.0


class TestConfig(Config):
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    WTF_CSRF_ENABLED = False
    BCRYPT_LOG_ROUNDS = 4
    ADMIN_TOKEN = 'test-admin-token'
    CORS_ORIGINS = []
    QUIZ_QUESTIONS_PER_SESSION = 10
    QUESTION_PROVIDER = question_provider
    LISTENING_HOURS_PROVIDER = listening_hours_provider
    MAINTENANCE_INTERVAL_SEC = 0


class FakeClock:
    def __init__(self, start=T0):
        self.t = start

    def __call__(self):
        return self.t

    def advance(self, seconds):
        self.t += seconds
        return self.t

    def set(self, ts):
        self.t = ts
        return self.t


@pytest.fixture()
def clock(monkeypatch):
    fake = FakeClock()
    monkeypatch.setattr(clock_module, 'now', fake)
    return fake


def _build_app(config_class):
    application = create_app(config_class)
    with application.app_context():
        # Ensure models are imported so tables are created
        import quickfire.models  # noqa: F401
        db.create_all()
    return application


def _teardown_app(application):
    with application.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def flask_app(clock):
    application = _build_app(TestConfig)
    yield application
    _teardown_app(application)


@pytest.fixture()
def app_ctx(flask_app):
    """Service-level tests run inside one application context."""
    with flask_app.app_context():
        yield flask_app
        db.session.remove()


@pytest.fixture()
def file_app(clock, tmp_path):
    """File-backed SQLite so worker threads get their own connections."""
    config = type('FileConfig', (TestConfig,), {
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'quickfire.db'}",
        'SQLALCHEMY_ENGINE_OPTIONS': {'connect_args': {'check_same_thread': False}},
    })
    application = _build_app(config)
    yield application
    _teardown_app(application)


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def sio_client(flask_app, client):
    test_client = socketio.test_client(
        flask_app,
        flask_test_client=client,
        namespace='/ws'
    )
    yield test_client
    try:
        test_client.disconnect(namespace='/ws')
    except Exception:
        pass


@pytest.fixture()
def make_user():
    """Create users directly; call inside an application context."""
    from quickfire.models import User

    def _make(username, country='US', password='password'):
        user = User(username=username, country=country)
        user.set_password(password)
        db.session.add(user)
        db.session.commit()
        return user
    return _make


def signup_and_login(test_client, username, country='US', password='password'):
    res = test_client.post('/users/add', json={'username': username, 'password': password, 'country': country})
    assert res.status_code == 201
    res = test_client.post('/login', json={'username': username, 'password': password})
    assert res.status_code == 200
    return res.get_json()['user']


def give_points(user_id, points):
    from quickfire.services.quiz.stats import ensure_stats
    stats = ensure_stats(user_id)
    stats.available_points += points
    stats.lifetime_points += points
    db.session.commit()
    return stats
