import io
import os

import pytest
from PIL import Image

os.environ['DATABASE_URL'] = 'sqlite://'
os.environ['FLASK_SECRET_KEY'] = 'test-secret-key'
os.environ['ADMIN_USERNAME'] = 'root'
os.environ['ADMIN_PASSWORD'] = 'rootpass'
os.environ['IP_LOOKUP_URL'] = ''
os.environ['APP_TIMEZONE'] = 'Asia/Ho_Chi_Minh'

import ideaboard  # noqa: E402
from ideaboard import db, Admin, Idea, Category  # noqa: E402
from werkzeug.security import generate_password_hash  # noqa: E402


@pytest.fixture
def app():
    flask_app = ideaboard.app
    flask_app.config.update(TESTING=True)
    with flask_app.app_context():
        db.drop_all()
        db.create_all()
        ideaboard.bootstrap_superadmin()
    ideaboard.API_CACHE.clear()
    yield flask_app
    with flask_app.app_context():
        db.session.remove()


@pytest.fixture
def client(app):
    return app.test_client()


def login(client, username='root', password='rootpass'):
    return client.post('/admin/login', data={'username': username, 'password': password})


@pytest.fixture
def admin_client(client):
    login(client)
    return client


@pytest.fixture
def make_idea(app):
    def _make(**kwargs):
        fields = dict(category='Education', title='An idea', description='Some description',
                      author_name='Alice', status='approved', likes=0, comments_count=0, images='[]')
        fields.update(kwargs)
        with app.app_context():
            idea = Idea(**fields)
            db.session.add(idea)
            db.session.commit()
            return idea.id
    return _make


@pytest.fixture
def make_admin(app):
    def _make(username, password='secret123', permissions=(), role='moderator'):
        with app.app_context():
            admin = Admin(username=username, password_hash=generate_password_hash(password),
                          role=role, permissions=','.join(permissions))
            db.session.add(admin)
            db.session.commit()
            return admin.id
    return _make


@pytest.fixture
def make_category(app):
    def _make(name):
        with app.app_context():
            category = Category(name=name)
            db.session.add(category)
            db.session.commit()
            return category.id
    return _make


def make_image_bytes(size=(800, 600), mode='RGB', fmt='PNG'):
    buffer = io.BytesIO()
    Image.new(mode, size, color=(200, 30, 30) if mode == 'RGB' else (200, 30, 30, 128)).save(buffer, format=fmt)
    return buffer.getvalue()
