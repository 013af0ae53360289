from types import SimpleNamespace

import pytest

from app import create_app, mail
from auth import Identity
from config import Config
from models import ROLE_USER


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    APP_BASE_URL = 'http://helpdesk.test'
    MAIL_DEFAULT_SENDER = 'helpdesk@example.com'
    MAIL_SUPPRESS_SEND = True
    MAIL_ASYNC = False
    ADMIN_NOTIFICATION_EMAIL = None
    TRANSLATE_API_URL = None
    JWT_SECRET = 'test-jwt-secret'
    LOG_LEVEL = 'WARNING'


@pytest.fixture
def app(tmp_path):
    class Cfg(TestConfig):
        UPLOAD_FOLDER = str(tmp_path / 'bucket')
    app = create_app(Cfg)
    with app.app_context():
        yield app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def svc(app):
    return app.extensions['helpdesk']


@pytest.fixture
def outbox(app):
    with mail.record_messages() as out:
        yield out


@pytest.fixture
def people(svc):
    def make(uid, role, name):
        profile = svc.profiles.ensure_profile(Identity(uid, f'{uid}@example.com', name, None))
        if role != ROLE_USER:
            svc.profiles.set_role(uid, role)
        return profile

    return SimpleNamespace(
        user=make('user-1', 'user', 'Uma User'),
        other=make('user-2', 'user', 'Otto Other'),
        worker=make('worker-1', 'worker', 'Wes Worker'),
        worker2=make('worker-2', 'worker', 'Wanda Worker'),
        admin=make('admin-1', 'admin', 'Ada Admin'),
    )


@pytest.fixture
def upload(svc):
    """Put bytes into the bucket and return the attachment reference a client would send."""
    def _upload(name='proof.png', data=b'\x89PNG data', content_type='image/png'):
        grant = svc.storage.issue_upload(name, content_type)
        svc.storage.put(grant['object_key'], data, content_type, grant['credential'])
        return {
            'name': name,
            'url': grant['public_url'],
            'type': content_type,
            'size': len(data),
            'file_key': grant['object_key'],
        }
    return _upload


@pytest.fixture
def make_ticket(svc, people):
    def _make(profile=None, title='Printer jam', priority='Medium', category='Other', attachments=()):
        result = svc.lifecycle.create_ticket(profile or people.user, title,
                                             'The office printer keeps jamming on page two.',
                                             priority, category, attachments=attachments)
        return result.ticket
    return _make


@pytest.fixture
def token_for(app):
    from auth import generate_jwt

    def _token(profile):
        with app.test_request_context():
            return {'Authorization': f'Bearer {generate_jwt(profile)}'}
    return _token
