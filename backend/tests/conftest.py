import os
import sys
import pytest

# Ensure the backend root (containing the `pingpong` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from pingpong import create_app, db, socketio
from pingpong.services.challenges.store import MemoryChallengeStore


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    CHALLENGE_CAPACITY = 3
    CAS_MAX_ATTEMPTS = 5
    WEBHOOK_TIMEOUT_SEC = 1
    DISPATCH_BATCH_SIZE = 0
    ALLOWED_ORIGINS = ['http://localhost:5173']


class RecordingGateway:
    """Gateway double that keeps every delivery; can be told to fail."""

    def __init__(self, fail=False):
        self.deliveries = []
        self.fail = fail

    def deliver(self, endpoint, payload):
        self.deliveries.append((endpoint, payload))
        if self.fail:
            raise RuntimeError('gateway down')

    def of_type(self, kind):
        return [(e, p) for e, p in self.deliveries if p.get('type') == kind]


@pytest.fixture()
def flask_app():
    application = create_app(TestConfig)
    with application.app_context():
        # Ensure models are imported so tables are created
        import pingpong.models  # noqa: F401
        db.create_all()
        yield application
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def notifications(flask_app):
    gateway = RecordingGateway()
    flask_app.extensions['pingpong.gateway'] = gateway
    return gateway


@pytest.fixture()
def sio_client(flask_app):
    test_client = socketio.test_client(
        flask_app,
        flask_test_client=flask_app.test_client(),
        namespace='/ws'
    )
    yield test_client
    try:
        test_client.disconnect(namespace='/ws')
    except Exception:
        pass


@pytest.fixture()
def memory_store():
    return MemoryChallengeStore()


@pytest.fixture()
def gateway():
    return RecordingGateway()
