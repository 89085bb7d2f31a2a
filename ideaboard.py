#!/usr/bin/env python
# coding: utf-8

import os
import io
import sys
import json
import base64
import hashlib
import time
import logging
import ipaddress
import mimetypes
import urllib.parse
from datetime import datetime, timedelta, timezone
from functools import wraps

# Third-party imports
import requests
from flask import (Flask, render_template, url_for, redirect, request, jsonify, session, flash, send_file, abort)
from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import case
from sqlalchemy.exc import IntegrityError
from jinja2 import DictLoader
from dotenv import load_dotenv
from werkzeug.security import generate_password_hash, check_password_hash
from PIL import Image, UnidentifiedImageError
import pytz

# --- Load Environment Variables ---
load_dotenv()

# ==============================================================================
# --- 1. Flask Application Initialization & Configuration ---
# ==============================================================================
app = Flask(__name__)

template_storage = {}
app.jinja_loader = DictLoader(template_storage)
# Templates have no file extension, so Flask would not turn autoescaping on by itself.
app.jinja_env.autoescape = True

app.secret_key = os.environ.get('FLASK_SECRET_KEY', 'YOUR_FALLBACK_FLASK_SECRET_KEY_HERE_32_CHARS')
app.config['PER_PAGE'] = 10
app.config['MAX_IMAGES'] = 3
app.config['IMAGE_MAX_SIZE'] = (400, 400)
app.config['IMAGE_QUALITY'] = 70
app.config['MAX_DETAIL_FILE_BYTES'] = 20480
app.config['MAX_CONTENT_LENGTH'] = 16 * 1024 * 1024
app.config['DEFAULT_SORT'] = 'likes'
app.config['SORT_OPTIONS'] = {'likes': 'Most liked', 'newest': 'Newest'}
app.config['LIVE_POLL_SECONDS'] = 15
app.config['CACHE_EXPIRY_SECONDS'] = 1800
app.config['IP_LOOKUP_URL'] = os.environ.get('IP_LOOKUP_URL', '').strip()
app.config['APP_TIMEZONE'] = os.environ.get('APP_TIMEZONE', 'Asia/Ho_Chi_Minh')

DEFAULT_BANNED_WORDS = ['lừa đảo', 'cờ bạc', 'cá độ', 'ma túy', 'casino', 'viagra', 'scam']
extra_banned_words = [w.strip().lower() for w in os.environ.get('BANNED_WORDS', '').split(',') if w.strip()]
app.config['BANNED_WORDS'] = DEFAULT_BANNED_WORDS + extra_banned_words

app.permanent_session_lifetime = timedelta(days=30)

logging.basicConfig(stream=sys.stderr, level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
app.logger.setLevel(logging.INFO)

if app.secret_key == 'YOUR_FALLBACK_FLASK_SECRET_KEY_HERE_32_CHARS':
    app.logger.warning("FLASK_SECRET_KEY is not set. Using the fallback key; sessions are not secure.")

# Data Persistence
using_postgres_flag = False

app.logger.info("--- Database Configuration ---")
database_url = os.environ.get('DATABASE_URL')

if database_url:
    app.logger.info(f"DATABASE_URL found. Raw value (prefix): '{database_url[:30]}...'")
else:
    app.logger.info("DATABASE_URL environment variable NOT FOUND or is empty.")

if database_url and (database_url.startswith("postgres://") or database_url.startswith("postgresql://")):
    if database_url.startswith("postgres://"):
        configured_db_uri = database_url.replace("postgres://", "postgresql://", 1)
        app.logger.info("Converted DATABASE_URL from 'postgres://' to 'postgresql://'.")
    else:
        configured_db_uri = database_url

    app.config['SQLALCHEMY_DATABASE_URI'] = configured_db_uri
    uri_to_log = configured_db_uri
    try:
        parsed_uri = urllib.parse.urlparse(configured_db_uri)
        if parsed_uri.username or parsed_uri.password:
            host_port = parsed_uri.hostname
            if parsed_uri.port:
                host_port += f":{parsed_uri.port}"
            uri_to_log = f"{parsed_uri.scheme}://********:********@{host_port}{parsed_uri.path}"
    except ValueError:
        pass
    app.logger.info(f"SQLAlchemy URI configured for PostgreSQL: {uri_to_log}")
    using_postgres_flag = True
elif database_url and database_url.startswith("sqlite:"):
    app.config['SQLALCHEMY_DATABASE_URI'] = database_url
    app.logger.info(f"SQLAlchemy URI configured from DATABASE_URL for SQLite: {database_url}")
else:
    if database_url:
        app.logger.warning(f"DATABASE_URL found ('{database_url[:30]}...') but it is neither a PostgreSQL nor a SQLite URL.")
    app.logger.info("Falling back to local SQLite database.")
    db_path = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'ideaboard.db')
    app.config['SQLALCHEMY_DATABASE_URI'] = f'sqlite:///{db_path}'
    app.logger.info(f"SQLAlchemy URI configured for SQLite: {app.config['SQLALCHEMY_DATABASE_URI']}")

app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
db = SQLAlchemy(app)
app.logger.info("--- End of Database Configuration ---")

# ==============================================================================
# --- 2. Database Models ---
# ==============================================================================
PERMISSIONS = ('approve', 'edit', 'delete', 'categories', 'comments', 'admins')
INTERACTION_KINDS = ('like', 'comment')


class Category(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), unique=True, nullable=False)
    created_at = db.Column(db.DateTime, nullable=False, default=lambda: datetime.now(timezone.utc))


class Idea(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    # Stored as the category name at submission time; deleting a category keeps it.
    category = db.Column(db.String(100), nullable=False)
    title = db.Column(db.String(250), nullable=False)
    description = db.Column(db.Text, nullable=False)
    author_name = db.Column(db.String(120), nullable=False)
    author_phone = db.Column(db.String(40), nullable=True)
    author_address = db.Column(db.String(250), nullable=True)
    social_link = db.Column(db.String(500), nullable=True)
    status = db.Column(db.String(20), nullable=False, default='pending', index=True)
    timestamp = db.Column(db.DateTime, nullable=False, default=lambda: datetime.now(timezone.utc))
    likes = db.Column(db.Integer, nullable=False, default=0)
    comments_count = db.Column(db.Integer, nullable=False, default=0)
    images = db.Column(db.Text, nullable=True)  # JSON list of data URLs
    file_data = db.Column(db.Text, nullable=True)
    file_name = db.Column(db.String(255), nullable=True)
    comments = db.relationship('Comment', backref='idea', lazy='dynamic', cascade="all, delete-orphan")
    interactions = db.relationship('Interaction', backref='idea', lazy='dynamic', cascade="all, delete-orphan")

    @property
    def image_list(self):
        if not self.images:
            return []
        try:
            parsed = json.loads(self.images)
        except json.JSONDecodeError:
            app.logger.warning(f"Idea {self.id} has malformed image data.")
            return []
        return parsed if isinstance(parsed, list) else []

    def to_dict(self, include_private=False):
        data = {
            'id': self.id, 'category': self.category, 'title': self.title,
            'description': self.description, 'author_name': self.author_name,
            'social_link': self.social_link, 'status': self.status or 'pending',
            'timestamp': normalize_timestamp(self.timestamp).isoformat(),
            'likes': self.likes or 0, 'comments_count': self.comments_count or 0,
            'images': self.image_list, 'has_file': bool(self.file_data), 'file_name': self.file_name
        }
        if include_private:
            data['author_phone'] = self.author_phone
            data['author_address'] = self.author_address
        return data


class Comment(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    idea_id = db.Column(db.Integer, db.ForeignKey('idea.id', ondelete="CASCADE"), nullable=False, index=True)
    text = db.Column(db.Text, nullable=False)
    ip_key = db.Column(db.String(64), nullable=False)
    timestamp = db.Column(db.DateTime, nullable=False, default=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {'id': self.id, 'idea_id': self.idea_id, 'text': self.text,
                'timestamp': normalize_timestamp(self.timestamp).isoformat()}


class Interaction(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    idea_id = db.Column(db.Integer, db.ForeignKey('idea.id', ondelete="CASCADE"), nullable=False)
    ip_key = db.Column(db.String(64), nullable=False)
    kind = db.Column(db.String(20), nullable=False)  # 'like' or 'comment'
    created_at = db.Column(db.DateTime, nullable=False, default=lambda: datetime.now(timezone.utc))
    # One like and one comment per IP per idea.
    __table_args__ = (db.UniqueConstraint('idea_id', 'ip_key', 'kind', name='_idea_ip_kind_uc'),)


class Admin(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(80), unique=True, nullable=False)
    password_hash = db.Column(db.String(256), nullable=False)
    role = db.Column(db.String(20), nullable=False, default='moderator')  # 'superadmin' or 'moderator'
    permissions = db.Column(db.String(200), nullable=False, default='')
    created_at = db.Column(db.DateTime, nullable=False, default=lambda: datetime.now(timezone.utc))

    @property
    def is_superadmin(self):
        return self.role == 'superadmin'

    @property
    def permission_set(self):
        if self.is_superadmin:
            return set(PERMISSIONS)
        return {p for p in (self.permissions or '').split(',') if p in PERMISSIONS}

    def has_permission(self, permission):
        return permission in self.permission_set

    def to_dict(self):
        return {'id': self.id, 'username': self.username, 'role': self.role,
                'permissions': sorted(self.permission_set)}


def init_db():
    with app.app_context():
        app.logger.info("--- Database Initialization (init_db) ---")
        try:
            dialect_name = db.engine.dialect.name
            app.logger.info(f"SQLAlchemy dialect in use: {dialect_name}")
            if using_postgres_flag and dialect_name != "postgresql":
                app.logger.warning(f"Intended to use PostgreSQL, but SQLAlchemy dialect is '{dialect_name}'.")
        except Exception as e:
            app.logger.error(f"Error during SQLAlchemy engine/dialect logging: {e}", exc_info=True)

        try:
            db.create_all()
            app.logger.info("db.create_all() executed successfully. Tables should be ready or already exist.")
        except Exception as e:
            app.logger.error(f"Error during db.create_all(): {e}", exc_info=True)
            return

        bootstrap_superadmin()
        app.logger.info("--- End of Database Initialization (init_db) ---")


def bootstrap_superadmin():
    """Create the first super-admin from ADMIN_USERNAME / ADMIN_PASSWORD when no admin exists."""
    if Admin.query.first():
        return
    username = os.environ.get('ADMIN_USERNAME', 'admin').strip().lower()
    password = os.environ.get('ADMIN_PASSWORD', 'admin')
    if password == 'admin':
        app.logger.warning("ADMIN_PASSWORD is not set. The bootstrap super-admin uses the default password.")
    try:
        db.session.add(Admin(username=username, password_hash=generate_password_hash(password), role='superadmin', permissions=','.join(PERMISSIONS)))
        db.session.commit()
        app.logger.info(f"Bootstrap super-admin '{username}' created.")
    except Exception as e:
        db.session.rollback()
        app.logger.error(f"Failed to create bootstrap super-admin '{username}': {e}", exc_info=True)

# ==============================================================================
# --- 3. Helper Functions ---
# ==============================================================================
API_CACHE = {}
LOCAL_TIMEZONE = pytz.timezone(app.config['APP_TIMEZONE'])
FEED_SEARCH_FIELDS = ('title', 'description', 'author_name')
ADMIN_SEARCH_FIELDS = ('title', 'author_name')


def jinja_truncate_filter(s, length=120, killwords=False, end='...'):
    if not s: return ''
    if len(s) <= length: return s
    if killwords: return s[:length - len(end)] + end
    words = s.split()
    result_words = []
    current_length = 0
    for word in words:
        if current_length + len(word) + (1 if result_words else 0) > length - len(end): break
        result_words.append(word)
        current_length += len(word) + (1 if len(result_words) > 1 else 0)
    if not result_words: return s[:length - len(end)] + end
    return ' '.join(result_words) + end
app.jinja_env.filters['truncate'] = jinja_truncate_filter


def normalize_timestamp(value):
    """SQLite hands back naive datetimes; treat them as UTC so they compare with aware ones."""
    if not isinstance(value, datetime):
        return datetime.min.replace(tzinfo=timezone.utc)
    return value if value.tzinfo else pytz.utc.localize(value)


def to_local_filter(utc_dt):
    if not utc_dt: return "N/A"
    if isinstance(utc_dt, str):
        try:
            utc_dt = datetime.fromisoformat(utc_dt[:-1] + '+00:00' if utc_dt.endswith('Z') else utc_dt)
        except ValueError: return "Invalid date string"
    if not isinstance(utc_dt, datetime): return "Invalid date object"
    local_dt = normalize_timestamp(utc_dt).astimezone(LOCAL_TIMEZONE)
    return local_dt.strftime('%d/%m/%Y %H:%M')
app.jinja_env.filters['to_local'] = to_local_filter


def simple_cache(expiry_seconds_default=None):
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            expiry = expiry_seconds_default or app.config['CACHE_EXPIRY_SECONDS']
            key_parts = [func.__name__] + list(map(str, args)) + sorted(kwargs.items())
            cache_key = hashlib.md5(str(key_parts).encode('utf-8')).hexdigest()
            cached_entry = API_CACHE.get(cache_key)
            if cached_entry and (time.time() - cached_entry[1] < expiry):
                app.logger.debug(f"Cache HIT for {func.__name__}")
                return cached_entry[0]
            app.logger.debug(f"Cache MISS for {func.__name__}. Calling function.")
            result = func(*args, **kwargs)
            # Failed lookups return None and are retried on the next call.
            if result is not None:
                API_CACHE[cache_key] = (result, time.time())
            return result
        return wrapper
    return decorator


def find_banned_word(text, banned_words=None):
    """Return the first denylisted term contained in ``text`` (case-insensitive), or None."""
    if not text:
        return None
    lowered = text.lower()
    for word in (banned_words if banned_words is not None else app.config['BANNED_WORDS']):
        if word and word.lower() in lowered:
            return word
    return None


def is_local_address(ip):
    try:
        addr = ipaddress.ip_address(ip)
    except ValueError:
        return False
    return addr.is_loopback or addr.is_private


@simple_cache()
def lookup_public_ip():
    url = app.config['IP_LOOKUP_URL']
    if not url:
        return None
    app.logger.info(f"Looking up public IP via {url}")
    try:
        response = requests.get(url, timeout=5)
        response.raise_for_status()
        return response.json().get('ip')
    except requests.exceptions.RequestException as e:
        app.logger.error(f"Error fetching public IP from {url}: {e}")
    except ValueError as e:
        app.logger.error(f"Public IP lookup returned invalid JSON: {e}")
    return None


def client_ip():
    ip = request.headers.get("X-Forwarded-For", request.remote_addr or "")
    ip = ip.split(",")[0].strip()
    if app.config['IP_LOOKUP_URL'] and (not ip or is_local_address(ip)):
        public_ip = lookup_public_ip()
        if public_ip:
            return public_ip
    return ip or 'unknown'


def make_ip_key(ip):
    return (ip or 'unknown').replace('.', '_').replace(':', '_')


def resize_image(stream, max_size=None, quality=None):
    """Scale an uploaded image down to fit ``max_size`` and return it as a JPEG data URL."""
    max_size = max_size or app.config['IMAGE_MAX_SIZE']
    quality = quality or app.config['IMAGE_QUALITY']
    try:
        image = Image.open(stream)
        image.load()
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError) as e:
        raise ValueError("One of the images could not be read.") from e
    if image.mode != 'RGB':
        image = image.convert('RGB')
    image.thumbnail(max_size, Image.LANCZOS)
    buffer = io.BytesIO()
    image.save(buffer, format='JPEG', quality=quality)
    return 'data:image/jpeg;base64,' + base64.b64encode(buffer.getvalue()).decode('utf-8')


def process_uploaded_images(files):
    selected = [f for f in files if f and f.filename][:app.config['MAX_IMAGES']]
    return [resize_image(f.stream) for f in selected]


def encode_detail_file(file_storage):
    payload = file_storage.read()
    if len(payload) > app.config['MAX_DETAIL_FILE_BYTES']:
        raise ValueError("The detail file must be under 20KB.")
    mimetype = mimetypes.guess_type(file_storage.filename)[0] or 'application/octet-stream'
    data_url = f"data:{mimetype};base64," + base64.b64encode(payload).decode('utf-8')
    return data_url, file_storage.filename


def decode_data_url(data_url):
    header, sep, encoded = (data_url or '').partition(',')
    if not sep or not header.startswith('data:'):
        raise ValueError("Not a data URL.")
    mimetype = header[5:].split(';')[0] or 'application/octet-stream'
    return mimetype, base64.b64decode(encoded, validate=True)


def filter_ideas(ideas, category='all', search='', fields=FEED_SEARCH_FIELDS):
    filtered = ideas
    if category and category != 'all':
        filtered = [i for i in filtered if i.category == category]
    search = (search or '').strip().lower()
    if search:
        filtered = [i for i in filtered if any(search in (getattr(i, f, None) or '').lower() for f in fields)]
    return filtered


def sort_ideas(ideas, order='likes'):
    if order == 'newest':
        return sorted(ideas, key=lambda i: normalize_timestamp(i.timestamp), reverse=True)
    return sorted(ideas, key=lambda i: i.likes or 0, reverse=True)


def get_paginated_items(items, page, per_page):
    total = len(items)
    total_pages = (total + per_page - 1) // per_page if per_page > 0 else 0
    page = max(1, min(page or 1, total_pages or 1))
    start = (page - 1) * per_page
    return items[start:start + per_page], total_pages, page


def build_page_links(current, total_pages):
    """First, last and current +/- 1 pages; None marks an ellipsis at current +/- 2."""
    if total_pages <= 1:
        return []
    links = []
    for i in range(1, total_pages + 1):
        if i == 1 or i == total_pages or current - 1 <= i <= current + 1:
            links.append(i)
        elif i == current - 2 or i == current + 2:
            links.append(None)
    return links


def load_feed(category, search, order, page):
    approved = Idea.query.filter_by(status='approved').order_by(Idea.id.asc()).all()
    filtered = sort_ideas(filter_ideas(approved, category, search, FEED_SEARCH_FIELDS), order)
    page_items, total_pages, page = get_paginated_items(filtered, page, app.config['PER_PAGE'])
    app.logger.info(f"[Feed] Render {len(filtered)} ideas (category='{category}', sort='{order}', page={page}).")
    return {'ideas': page_items, 'total': len(filtered), 'page': page, 'total_pages': total_pages}


def feed_args():
    category = request.args.get('category', 'all').strip() or 'all'
    search = request.args.get('q', '').strip()
    order = request.args.get('sort', app.config['DEFAULT_SORT'])
    if order not in app.config['SORT_OPTIONS']:
        order = app.config['DEFAULT_SORT']
    page = request.args.get('page', 1, type=int)
    return category, search, order, page


def request_text(name):
    """Trimmed string field from a JSON object body or the form; None when the value is not a string."""
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        payload = request.form
    value = payload.get(name, '')
    return value.strip() if isinstance(value, str) else None


def current_admin():
    """Re-read the logged-in admin on every request so permission changes apply immediately."""
    admin_id = session.get('admin_id')
    if admin_id is None:
        return None
    admin = db.session.get(Admin, admin_id)
    if admin is None:
        app.logger.info(f"Admin {admin_id} no longer exists. Clearing admin session.")
        session.pop('admin_id', None)
    return admin


def wants_json():
    return request.is_json or 'application/json' in request.headers.get('Accept', '') or request.path.startswith('/admin/api/')


def admin_required(permission=None):
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            admin = current_admin()
            if not admin:
                if wants_json():
                    return jsonify({"success": False, "error": "Admin login required."}), 401
                flash("Please log in as an administrator.", "warning")
                return redirect(url_for('admin_home'))
            if permission and not admin.has_permission(permission):
                app.logger.warning(f"Admin '{admin.username}' denied '{permission}' on {request.path}")
                if wants_json():
                    return jsonify({"success": False, "error": "You do not have permission to perform this action."}), 403
                flash("You do not have permission to perform this action.", "danger")
                return redirect(url_for('admin_home'))
            return f(*args, **kwargs)
        return decorated_function
    return decorator

# ==============================================================================
# --- 4. Public Routes ---
# ==============================================================================
@app.context_processor
def inject_global_vars():
    return {'categories': Category.query.order_by(Category.name.asc()).all(),
            'current_year': datetime.now(timezone.utc).year,
            'admin': current_admin(),
            'sort_options': app.config['SORT_OPTIONS'],
            'live_poll_seconds': app.config['LIVE_POLL_SECONDS']}


@app.route('/')
def index():
    category, search, order, page = feed_args()
    feed = load_feed(category, search, order, page)
    page_url = lambda p: url_for('index', category=category, q=search or None, sort=order, page=p)
    return render_template("INDEX_HTML_TEMPLATE",
                           ideas=feed['ideas'], total=feed['total'],
                           current_page=feed['page'], total_pages=feed['total_pages'],
                           page_links=build_page_links(feed['page'], feed['total_pages']), page_url=page_url,
                           selected_category=category, query=search, selected_sort=order)


@app.route('/api/ideas')
def api_ideas():
    category, search, order, page = feed_args()
    feed = load_feed(category, search, order, page)
    return jsonify({"success": True,
                    "ideas": [i.to_dict() for i in feed['ideas']],
                    "total": feed['total'], "page": feed['page'], "total_pages": feed['total_pages']})


@app.route('/submit', methods=['GET', 'POST'])
def submit_idea():
    if request.method == 'GET':
        return render_template("SUBMIT_HTML_TEMPLATE")

    category, title, description, author_name, phone, address, social_link = map(
        lambda x: request.form.get(x, '').strip(),
        ['category', 'title', 'description', 'fullname', 'phone', 'address', 'social_link'])
    if not all([category, title, description, author_name]):
        flash("Category, title, description and your full name are required.", "danger")
        return redirect(url_for('submit_idea'))

    banned = next(filter(None, map(find_banned_word, (title, description, author_name))), None)
    if banned:
        app.logger.warning(f"Submission rejected by content filter (matched '{banned}').")
        flash("Your idea contains prohibited content and cannot be submitted.", "danger")
        return redirect(url_for('submit_idea'))

    detail_file = request.files.get('detail_file')
    try:
        file_data, file_name = encode_detail_file(detail_file) if detail_file and detail_file.filename else (None, None)
        images = process_uploaded_images(request.files.getlist('images'))
    except ValueError as e:
        flash(str(e), "danger")
        return redirect(url_for('submit_idea'))

    new_idea = Idea(category=category, title=title, description=description, author_name=author_name,
                    author_phone=phone or None, author_address=address or None, social_link=social_link or None,
                    status='pending', timestamp=datetime.now(timezone.utc), likes=0, comments_count=0,
                    images=json.dumps(images), file_data=file_data, file_name=file_name)
    try:
        db.session.add(new_idea)
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        app.logger.error(f"Error saving submitted idea '{title[:50]}': {e}", exc_info=True)
        flash("Could not submit your idea at this time. Please try again later.", "danger")
        return redirect(url_for('submit_idea'))

    app.logger.info(f"Idea {new_idea.id} submitted ('{title[:50]}') with {len(images)} image(s), pending approval.")
    flash("Submitted! Please wait for approval.", "success")
    return redirect(url_for('index'))


@app.route('/idea/<int:idea_id>/like', methods=['POST'])
def like_idea(idea_id):
    idea = Idea.query.filter_by(id=idea_id, status='approved').first()
    if not idea:
        return jsonify({"success": False, "error": "Idea not found."}), 404

    ip_key = make_ip_key(client_ip())
    if Interaction.query.filter_by(idea_id=idea.id, ip_key=ip_key, kind='like').first():
        app.logger.info(f"Repeated like on idea {idea.id} from {ip_key} rejected.")
        return jsonify({"success": False, "error": "You have already liked this idea."}), 409

    try:
        db.session.add(Interaction(idea_id=idea.id, ip_key=ip_key, kind='like'))
        db.session.flush()
        Idea.query.filter_by(id=idea.id).update({Idea.likes: db.func.coalesce(Idea.likes, 0) + 1}, synchronize_session=False)
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return jsonify({"success": False, "error": "You have already liked this idea."}), 409
    except Exception as e:
        db.session.rollback()
        app.logger.error(f"Error liking idea {idea.id}: {e}", exc_info=True)
        return jsonify({"success": False, "error": "A database error occurred."}), 500

    app.logger.info(f"Idea {idea.id} liked by {ip_key}. Likes now {idea.likes}.")
    return jsonify({"success": True, "likes": idea.likes})


@app.route('/idea/<int:idea_id>/comments')
def list_comments(idea_id):
    idea = Idea.query.filter_by(id=idea_id).first()
    if not idea or (idea.status != 'approved' and not current_admin()):
        return jsonify({"success": False, "error": "Idea not found."}), 404
    comments = idea.comments.order_by(Comment.timestamp.asc(), Comment.id.asc()).all()
    return jsonify({"success": True, "comments": [c.to_dict() for c in comments],
                    "comments_count": idea.comments_count or 0})


@app.route('/idea/<int:idea_id>/comment', methods=['POST'])
def add_comment(idea_id):
    idea = Idea.query.filter_by(id=idea_id, status='approved').first()
    if not idea:
        return jsonify({"success": False, "error": "Idea not found."}), 404

    text = request_text('text')
    if not text:
        return jsonify({"success": False, "error": "Comment cannot be empty."}), 400
    banned = find_banned_word(text)
    if banned:
        app.logger.warning(f"Comment on idea {idea.id} rejected by content filter (matched '{banned}').")
        return jsonify({"success": False, "error": "Your comment contains prohibited content."}), 400

    ip_key = make_ip_key(client_ip())
    if Interaction.query.filter_by(idea_id=idea.id, ip_key=ip_key, kind='comment').first():
        app.logger.info(f"Repeated comment on idea {idea.id} from {ip_key} rejected.")
        return jsonify({"success": False, "error": "You have already commented on this idea."}), 409

    new_comment = Comment(idea_id=idea.id, text=text, ip_key=ip_key, timestamp=datetime.now(timezone.utc))
    try:
        db.session.add(Interaction(idea_id=idea.id, ip_key=ip_key, kind='comment'))
        db.session.add(new_comment)
        db.session.flush()
        Idea.query.filter_by(id=idea.id).update({Idea.comments_count: db.func.coalesce(Idea.comments_count, 0) + 1}, synchronize_session=False)
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return jsonify({"success": False, "error": "You have already commented on this idea."}), 409
    except Exception as e:
        db.session.rollback()
        app.logger.error(f"Error saving comment on idea {idea.id}: {e}", exc_info=True)
        return jsonify({"success": False, "error": "A database error occurred. Could not save comment."}), 500

    app.logger.info(f"Comment {new_comment.id} added to idea {idea.id} by {ip_key}.")
    return jsonify({"success": True, "comment": new_comment.to_dict(), "comments_count": idea.comments_count}), 201


@app.route('/idea/<int:idea_id>/file')
def download_idea_file(idea_id):
    idea = Idea.query.filter_by(id=idea_id).first_or_404()
    if (idea.status != 'approved' and not current_admin()) or not idea.file_data:
        abort(404)
    try:
        mimetype, payload = decode_data_url(idea.file_data)
    except ValueError as e:
        app.logger.error(f"Attached file of idea {idea.id} could not be decoded: {e}")
        abort(404)
    return send_file(io.BytesIO(payload), mimetype=mimetype, as_attachment=True, download_name=idea.file_name or 'file')

# ==============================================================================
# --- 5. Admin Routes ---
# ==============================================================================
@app.route('/admin')
def admin_home():
    admin = current_admin()
    if not admin:
        return render_template("ADMIN_LOGIN_HTML_TEMPLATE")

    all_ideas = Idea.query.order_by(Idea.id.asc()).all()
    pending = sort_ideas([i for i in all_ideas if (i.status or 'pending') == 'pending'], 'newest')
    approved = [i for i in all_ideas if i.status == 'approved']

    admin_search = request.args.get('q', '').strip()
    admin_category = request.args.get('category', 'all').strip() or 'all'
    approved_filtered = sort_ideas(filter_ideas(approved, admin_category, admin_search, ADMIN_SEARCH_FIELDS), 'newest')

    per_page = app.config['PER_PAGE']
    pending_items, pending_total_pages, pending_page = get_paginated_items(pending, request.args.get('pending_page', 1, type=int), per_page)
    approved_items, approved_total_pages, approved_page = get_paginated_items(approved_filtered, request.args.get('page', 1, type=int), per_page)

    def dashboard_url(**overrides):
        params = {'q': admin_search or None, 'category': admin_category, 'page': approved_page, 'pending_page': pending_page}
        params.update(overrides)
        return url_for('admin_home', **params)

    return render_template("ADMIN_DASHBOARD_HTML_TEMPLATE",
                           stats={'total': len(all_ideas), 'pending': len(pending), 'approved': len(approved)},
                           pending_ideas=pending_items, pending_page=pending_page, pending_total_pages=pending_total_pages,
                           pending_links=build_page_links(pending_page, pending_total_pages),
                           pending_page_url=lambda p: dashboard_url(pending_page=p),
                           approved_ideas=approved_items, approved_page=approved_page, approved_total_pages=approved_total_pages,
                           approved_links=build_page_links(approved_page, approved_total_pages),
                           approved_page_url=lambda p: dashboard_url(page=p),
                           pending_offset=(pending_page - 1) * per_page, approved_offset=(approved_page - 1) * per_page,
                           admin_search=admin_search, admin_category=admin_category, permissions=PERMISSIONS)


@app.route('/admin/login', methods=['POST'])
def admin_login():
    username, password = request.form.get('username', '').strip().lower(), request.form.get('password', '')
    admin = Admin.query.filter_by(username=username).first()
    if admin and check_password_hash(admin.password_hash, password):
        session.permanent = True
        session['admin_id'] = admin.id
        app.logger.info(f"Admin '{admin.username}' logged in.")
        flash(f"Welcome, {admin.username}!", "success")
    else:
        app.logger.warning(f"Failed admin login attempt for '{username}'.")
        flash("Invalid username or password.", "danger")
    return redirect(url_for('admin_home'))


@app.route('/admin/logout', methods=['POST'])
def admin_logout():
    session.pop('admin_id', None)
    flash("You have been logged out.", "info")
    return redirect(url_for('admin_home'))


@app.route('/admin/api/me')
@admin_required()
def admin_me():
    admin = current_admin()
    return jsonify({"success": True, **admin.to_dict()})


@app.route('/admin/idea/<int:idea_id>')
@admin_required()
def admin_idea_details(idea_id):
    idea = db.session.get(Idea, idea_id)
    if not idea:
        return jsonify({"success": False, "error": "Idea not found."}), 404
    return jsonify({"success": True, "idea": idea.to_dict(include_private=True)})


@app.route('/admin/idea/<int:idea_id>/approve', methods=['POST'])
@admin_required('approve')
def approve_idea(idea_id):
    idea = db.session.get(Idea, idea_id)
    if not idea:
        return jsonify({"success": False, "error": "Idea not found."}), 404
    try:
        idea.status = 'approved'
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        app.logger.error(f"Error approving idea {idea_id}: {e}", exc_info=True)
        return jsonify({"success": False, "error": "A database error occurred."}), 500
    app.logger.info(f"[Admin] Idea {idea_id} approved by '{current_admin().username}'.")
    return jsonify({"success": True, "status": idea.status})


@app.route('/admin/idea/<int:idea_id>/edit', methods=['POST'])
@admin_required('edit')
def edit_idea(idea_id):
    idea = db.session.get(Idea, idea_id)
    if not idea:
        return jsonify({"success": False, "error": "Idea not found."}), 404
    title, description = request_text('title'), request_text('description')
    if not title or not description:
        return jsonify({"success": False, "error": "Title and description cannot be empty."}), 400
    try:
        idea.title, idea.description = title, description
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        app.logger.error(f"Error editing idea {idea_id}: {e}", exc_info=True)
        return jsonify({"success": False, "error": "A database error occurred."}), 500
    app.logger.info(f"[Admin] Idea {idea_id} edited by '{current_admin().username}'.")
    return jsonify({"success": True, "title": idea.title, "description": idea.description})


@app.route('/admin/idea/<int:idea_id>/delete', methods=['POST'])
@admin_required('delete')
def delete_idea(idea_id):
    idea = db.session.get(Idea, idea_id)
    if not idea:
        return jsonify({"success": False, "error": "Idea not found."}), 404
    try:
        # Comments and interactions go with it through the relationship cascades.
        db.session.delete(idea)
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        app.logger.error(f"Error deleting idea {idea_id}: {e}", exc_info=True)
        return jsonify({"success": False, "error": "A database error occurred."}), 500
    app.logger.info(f"[Admin] Idea {idea_id} deleted by '{current_admin().username}'.")
    return jsonify({"success": True})


@app.route('/admin/comment/<int:comment_id>/delete', methods=['POST'])
@admin_required('comments')
def delete_comment(comment_id):
    comment = db.session.get(Comment, comment_id)
    if not comment:
        return jsonify({"success": False, "error": "Comment not found."}), 404
    idea_id = comment.idea_id
    try:
        Interaction.query.filter_by(idea_id=idea_id, ip_key=comment.ip_key, kind='comment').delete(synchronize_session=False)
        db.session.delete(comment)
        Idea.query.filter_by(id=idea_id).update(
            {Idea.comments_count: case((Idea.comments_count > 0, Idea.comments_count - 1), else_=0)},
            synchronize_session=False)
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        app.logger.error(f"Error deleting comment {comment_id}: {e}", exc_info=True)
        return jsonify({"success": False, "error": "A database error occurred."}), 500
    app.logger.info(f"[Admin] Comment {comment_id} on idea {idea_id} deleted by '{current_admin().username}'.")
    idea = db.session.get(Idea, idea_id)
    return jsonify({"success": True, "comments_count": idea.comments_count if idea else 0})


@app.route('/admin/categories', methods=['POST'])
@admin_required('categories')
def add_category():
    name = request.form.get('name', '').strip()
    if not name:
        flash("Please enter a category name.", "warning")
    elif Category.query.filter_by(name=name).first():
        flash(f"Category '{name}' already exists.", "warning")
    else:
        try:
            db.session.add(Category(name=name))
            db.session.commit()
            app.logger.info(f"[Admin] Category '{name}' added by '{current_admin().username}'.")
            flash("Category added!", "success")
        except Exception as e:
            db.session.rollback()
            app.logger.error(f"Error adding category '{name}': {e}", exc_info=True)
            flash("Could not add the category.", "danger")
    return redirect(url_for('admin_home'))


@app.route('/admin/categories/<int:category_id>/delete', methods=['POST'])
@admin_required('categories')
def delete_category(category_id):
    category = db.session.get(Category, category_id)
    if not category:
        flash("Category not found.", "warning")
        return redirect(url_for('admin_home'))
    try:
        db.session.delete(category)
        db.session.commit()
        app.logger.info(f"[Admin] Category '{category.name}' deleted by '{current_admin().username}'.")
        flash("Category deleted!", "success")
    except Exception as e:
        db.session.rollback()
        app.logger.error(f"Error deleting category {category_id}: {e}", exc_info=True)
        flash("Could not delete the category.", "danger")
    return redirect(url_for('admin_home'))


@app.route('/admin/accounts', methods=['GET', 'POST'])
@admin_required('admins')
def admin_accounts():
    if request.method == 'POST':
        username, password = request.form.get('username', '').strip().lower(), request.form.get('password', '')
        selected = [p for p in request.form.getlist('permissions') if p in PERMISSIONS]
        if not username or not password: flash('Username and password are required.', 'danger')
        elif len(username) < 3: flash('Username must be at least 3 characters.', 'warning')
        elif len(password) < 6: flash('Password must be at least 6 characters.', 'warning')
        elif Admin.query.filter_by(username=username).first(): flash('Username already exists. Please choose another.', 'warning')
        else:
            try:
                db.session.add(Admin(username=username, password_hash=generate_password_hash(password), role='moderator', permissions=','.join(selected)))
                db.session.commit()
                app.logger.info(f"[Admin] Account '{username}' created by '{current_admin().username}' with permissions {selected}.")
                flash(f"Admin account '{username}' created.", 'success')
            except Exception as e:
                db.session.rollback()
                app.logger.error(f"Error creating admin account '{username}': {e}", exc_info=True)
                flash('Could not create the account.', 'danger')
        return redirect(url_for('admin_accounts'))
    accounts = Admin.query.order_by(Admin.created_at.asc(), Admin.id.asc()).all()
    return render_template("ADMIN_ACCOUNTS_HTML_TEMPLATE", accounts=accounts, permissions=PERMISSIONS)


@app.route('/admin/accounts/<int:account_id>/permissions', methods=['POST'])
@admin_required('admins')
def update_admin_permissions(account_id):
    account = db.session.get(Admin, account_id)
    if not account:
        flash("Admin account not found.", "warning")
    elif account.is_superadmin:
        flash("A super-admin always has every permission.", "warning")
    else:
        selected = [p for p in request.form.getlist('permissions') if p in PERMISSIONS]
        try:
            account.permissions = ','.join(selected)
            db.session.commit()
            app.logger.info(f"[Admin] Permissions of '{account.username}' set to {selected} by '{current_admin().username}'.")
            flash(f"Permissions of '{account.username}' updated.", "success")
        except Exception as e:
            db.session.rollback()
            app.logger.error(f"Error updating permissions of admin {account_id}: {e}", exc_info=True)
            flash("Could not update permissions.", "danger")
    return redirect(url_for('admin_accounts'))


@app.route('/admin/accounts/<int:account_id>/delete', methods=['POST'])
@admin_required('admins')
def delete_admin_account(account_id):
    admin = current_admin()
    account = db.session.get(Admin, account_id)
    if not account:
        flash("Admin account not found.", "warning")
    elif account.id == admin.id:
        flash("You cannot delete your own account.", "warning")
    elif account.is_superadmin and Admin.query.filter_by(role='superadmin').count() <= 1:
        flash("The last super-admin cannot be deleted.", "warning")
    else:
        try:
            db.session.delete(account)
            db.session.commit()
            app.logger.info(f"[Admin] Account '{account.username}' deleted by '{admin.username}'.")
            flash(f"Admin account '{account.username}' deleted.", "success")
        except Exception as e:
            db.session.rollback()
            app.logger.error(f"Error deleting admin account {account_id}: {e}", exc_info=True)
            flash("Could not delete the account.", "danger")
    return redirect(url_for('admin_accounts'))


@app.errorhandler(404)
def page_not_found(e): return render_template("404_TEMPLATE"), 404
@app.errorhandler(413)
def request_too_large(e):
    app.logger.warning(f"Upload to {request.path} rejected: body exceeds {app.config['MAX_CONTENT_LENGTH']} bytes.")
    if wants_json(): return jsonify({"success": False, "error": "The upload is too large."}), 413
    flash("The upload is too large.", "danger")
    return redirect(url_for('submit_idea'))
@app.errorhandler(500)
def internal_server_error(e): db.session.rollback(); app.logger.error(f"500 error at {request.url}: {e}", exc_info=True); return render_template("500_TEMPLATE"), 500

# ==============================================================================
# --- 6. HTML Templates (Stored in memory) ---
# ==============================================================================

BASE_HTML_TEMPLATE = """
<!doctype html>
<html lang="en">
<head>
    <meta charset="utf-8">
    <meta name="viewport" content="width=device-width, initial-scale=1">
    <title>{% block title %}IdeaBoard{% endblock %}</title>
    <link href="https://cdn.jsdelivr.net/npm/bootstrap@5.3.2/dist/css/bootstrap.min.css" rel="stylesheet">
    <link rel="stylesheet" href="https://cdnjs.cloudflare.com/ajax/libs/font-awesome/6.4.0/css/all.min.css">
    <style>
        :root { --primary-color: #0F766E; --primary-dark: #115E59; --danger-color: #DC2626; --text-muted-color: #6B7280; --light-bg: #F9FAFB; --card-border-color: #E5E7EB; }
        body { padding-top: 80px; background-color: var(--light-bg); display: flex; flex-direction: column; min-height: 100vh; }
        .main-content { flex-grow: 1; }
        .navbar-main { background-color: var(--primary-color); position: fixed; top: 0; width: 100%; z-index: 1040; }
        .navbar-main a { color: white; text-decoration: none; }
        .alert-top { position: fixed; top: 80px; left: 50%; transform: translateX(-50%); z-index: 2050; min-width: 320px; text-align: center; }
        .idea-card { border: 1px solid var(--card-border-color); border-radius: 0.75rem; margin-bottom: 0.75rem; background: white; }
        .idea-card .accordion-button { font-weight: 600; }
        .idea-image { width: 80px; height: 80px; object-fit: cover; border-radius: 0.375rem; cursor: zoom-in; margin-right: 0.5rem; }
        .category-tag { background: rgba(15, 118, 110, 0.1); color: var(--primary-dark); border-radius: 50px; padding: 2px 10px; font-size: 0.75rem; }
        .comment { border-left: 3px solid var(--card-border-color); padding: 0.25rem 0.75rem; margin-bottom: 0.5rem; }
        .category-chip { display: inline-flex; align-items: center; gap: 0.4rem; background: #E5E7EB; border-radius: 50px; padding: 2px 10px; margin: 2px; }
        .admin-img-thumb { width: 40px; height: 40px; object-fit: cover; border-radius: 0.25rem; cursor: zoom-in; }
        #live-banner { display: none; }
        footer { background: #111827; color: #D1D5DB; padding: 1rem 0; }
    </style>
</head>
<body>
    <nav class="navbar-main py-3 shadow-sm">
        <div class="container d-flex justify-content-between align-items-center">
            <a href="{{ url_for('index') }}" class="fs-4 fw-bold"><i class="fas fa-lightbulb me-2"></i>IdeaBoard</a>
            <div class="d-flex gap-3">
                <a href="{{ url_for('index') }}"><i class="fas fa-list me-1"></i>Ideas</a>
                <a href="{{ url_for('submit_idea') }}"><i class="fas fa-paper-plane me-1"></i>Submit</a>
                <a href="{{ url_for('admin_home') }}"><i class="fas fa-user-shield me-1"></i>Admin</a>
            </div>
        </div>
    </nav>

    <div id="alert-placeholder">
        {% with messages = get_flashed_messages(with_categories=true) %}
            {% if messages %}
                {% for category, message in messages %}
                <div class="alert alert-{{ category }} alert-dismissible fade show alert-top" role="alert">
                    <span>{{ message }}</span>
                    <button type="button" class="btn-close" data-bs-dismiss="alert" aria-label="Close"></button>
                </div>
                {% endfor %}
            {% endif %}
        {% endwith %}
    </div>

    <main class="container main-content my-4">
        {% block content %}{% endblock %}
    </main>

    <div class="modal fade" id="imageModal" tabindex="-1" aria-hidden="true">
        <div class="modal-dialog modal-dialog-centered modal-lg"><div class="modal-content bg-transparent border-0">
            <img id="modal-img" src="" class="img-fluid rounded" alt="" data-bs-dismiss="modal">
        </div></div>
    </div>

    <footer class="text-center mt-4"><small>&copy; {{ current_year }} IdeaBoard</small></footer>

    <script src="https://cdn.jsdelivr.net/npm/bootstrap@5.3.2/dist/js/bootstrap.bundle.min.js"></script>
    <script>
        function showToast(message, type) {
            const placeholder = document.getElementById('alert-placeholder');
            const alert = document.createElement('div');
            alert.className = `alert alert-${type || 'primary'} alert-dismissible fade show alert-top`;
            alert.setAttribute('role', 'alert');
            const span = document.createElement('span');
            span.textContent = message;
            alert.appendChild(span);
            placeholder.appendChild(alert);
            setTimeout(() => alert.remove(), 3000);
        }
        function postJSON(url, body) {
            return fetch(url, {
                method: 'POST',
                headers: { 'Content-Type': 'application/json', 'Accept': 'application/json' },
                body: JSON.stringify(body || {})
            }).then(res => res.json().then(data => ({ ok: res.ok, status: res.status, data })));
        }
        document.addEventListener('click', function(e) {
            const img = e.target.closest('[data-lightbox]');
            if (!img) return;
            e.stopPropagation();
            document.getElementById('modal-img').src = img.getAttribute('src');
            bootstrap.Modal.getOrCreateInstance(document.getElementById('imageModal')).show();
        });
        setTimeout(() => document.querySelectorAll('.alert-top').forEach(a => a.remove()), 4000);
    </script>
    {% block scripts %}{% endblock %}
</body>
</html>
"""

_PAGINATION_TEMPLATE = """
{% if total_pages and total_pages > 1 %}
<nav aria-label="Page navigation" class="mt-4"><ul class="pagination justify-content-center">
    <li class="page-item {% if current_page == 1 %}disabled{% endif %}">
        <a class="page-link" href="{{ page_url(current_page - 1) if current_page > 1 else '#' }}"><i class="fas fa-chevron-left"></i></a>
    </li>
    {% for p in page_links %}
        {% if p is none %}<li class="page-item disabled"><span class="page-link">...</span></li>
        {% elif p == current_page %}<li class="page-item active" aria-current="page"><span class="page-link">{{ p }}</span></li>
        {% else %}<li class="page-item"><a class="page-link" href="{{ page_url(p) }}">{{ p }}</a></li>{% endif %}
    {% endfor %}
    <li class="page-item {% if current_page == total_pages %}disabled{% endif %}">
        <a class="page-link" href="{{ page_url(current_page + 1) if current_page < total_pages else '#' }}"><i class="fas fa-chevron-right"></i></a>
    </li>
</ul></nav>
{% endif %}
"""

_IDEA_CARD_TEMPLATE = """
<div class="idea-card accordion-item" data-id="{{ idea.id }}">
    <h2 class="accordion-header">
        <button class="accordion-button collapsed" type="button" data-bs-toggle="collapse" data-bs-target="#idea-body-{{ idea.id }}">
            <span class="me-auto text-truncate">{{ idea.title | truncate(80) if idea.title else 'Untitled' }}</span>
            <span class="ms-3 small text-nowrap"><i class="fas fa-heart text-danger"></i> <span class="like-count" data-id="{{ idea.id }}">{{ idea.likes or 0 }}</span></span>
        </button>
    </h2>
    <div id="idea-body-{{ idea.id }}" class="accordion-collapse collapse" data-bs-parent="#ideas-container">
        <div class="accordion-body">
            <div class="d-flex justify-content-between mb-2">
                <span class="category-tag">{{ idea.category }}</span>
                <small class="text-muted">{{ idea.timestamp | to_local }}</small>
            </div>
            <p class="small mb-1">Submitted by: {{ idea.author_name }}</p>
            {% if idea.social_link %}<p class="small mb-1"><a href="{{ idea.social_link }}" target="_blank" rel="noopener">{{ idea.social_link }}</a></p>{% endif %}
            <div class="mb-3" style="white-space: pre-line;">{{ idea.description }}</div>
            {% if idea.file_data %}
            <a href="{{ url_for('download_idea_file', idea_id=idea.id) }}" class="small d-block mb-2"><i class="fas fa-file-download"></i> Download file: {{ idea.file_name }}</a>
            {% endif %}
            <div class="mb-3">{% for img in idea.image_list %}<img src="{{ img }}" class="idea-image" alt="" data-lightbox>{% endfor %}</div>
            <div class="d-flex gap-2">
                <button class="btn btn-sm btn-outline-danger like-btn" data-id="{{ idea.id }}"><i class="fas fa-heart"></i> <span class="like-count" data-id="{{ idea.id }}">{{ idea.likes or 0 }}</span></button>
                <button class="btn btn-sm btn-outline-secondary comments-toggle" data-id="{{ idea.id }}"><i class="fas fa-comment"></i> <span class="comment-count" data-id="{{ idea.id }}">{{ idea.comments_count or 0 }}</span></button>
            </div>
            <div id="comment-section-{{ idea.id }}" class="mt-3 d-none">
                <div id="comments-{{ idea.id }}" class="mb-2"></div>
                <form class="comment-form d-flex gap-2" data-id="{{ idea.id }}">
                    <input type="text" class="form-control form-control-sm" name="text" placeholder="Write a comment..." required>
                    <button type="submit" class="btn btn-sm btn-primary">Send</button>
                </form>
            </div>
        </div>
    </div>
</div>
"""

INDEX_HTML_TEMPLATE = """
{% extends "BASE_HTML_TEMPLATE" %}
{% block title %}Ideas - IdeaBoard{% endblock %}
{% block content %}
<form method="get" action="{{ url_for('index') }}" class="row g-2 mb-4" id="feed-filters">
    <div class="col-md-5"><input type="search" class="form-control" name="q" id="search-input" value="{{ query or '' }}" placeholder="Search ideas, descriptions or authors..."></div>
    <div class="col-md-3">
        <select class="form-select" name="category" id="category-filter">
            <option value="all">All categories</option>
            {% for cat in categories %}<option value="{{ cat.name }}" {{ 'selected' if cat.name == selected_category else '' }}>{{ cat.name }}</option>{% endfor %}
        </select>
    </div>
    <div class="col-md-2">
        <select class="form-select" name="sort" id="sort-order">
            {% for value, label in sort_options.items() %}<option value="{{ value }}" {{ 'selected' if value == selected_sort else '' }}>{{ label }}</option>{% endfor %}
        </select>
    </div>
    <div class="col-md-2"><button class="btn btn-primary w-100" type="submit"><i class="fas fa-filter me-1"></i>Apply</button></div>
</form>

<div id="live-banner" class="alert alert-info d-flex justify-content-between align-items-center">
    <span>The idea list has changed.</span>
    <a href="{{ request.full_path }}" class="btn btn-sm btn-info">Refresh</a>
</div>

<div class="accordion" id="ideas-container">
    {% for idea in ideas %}
        {% include '_IDEA_CARD_TEMPLATE' %}
    {% else %}
        <p class="text-center text-muted p-4">No ideas found.</p>
    {% endfor %}
</div>

{% include '_PAGINATION_TEMPLATE' %}
{% endblock %}

{% block scripts %}
<script>
    document.addEventListener('DOMContentLoaded', function() {
        const filters = document.getElementById('feed-filters');
        ['category-filter', 'sort-order'].forEach(id => {
            document.getElementById(id).addEventListener('change', () => filters.submit());
        });

        const isAdmin = {{ (admin is not none) | tojson }};
        let canDeleteComments = {{ (admin is not none and admin.has_permission('comments')) | tojson }};

        function loadComments(ideaId) {
            fetch(`/idea/${ideaId}/comments`)
                .then(res => res.json())
                .then(data => {
                    const el = document.getElementById('comments-' + ideaId);
                    el.innerHTML = '';
                    (data.comments || []).forEach(c => {
                        const div = document.createElement('div');
                        div.className = 'comment';
                        const span = document.createElement('span');
                        span.textContent = c.text;
                        div.appendChild(span);
                        if (isAdmin) {
                        const del = document.createElement('button');
                        del.className = 'btn btn-link btn-sm text-danger';
                        del.dataset.permission = 'comments';
                        del.classList.toggle('d-none', !canDeleteComments);
                        del.textContent = 'Delete';
                        del.onclick = () => postJSON(`/admin/comment/${c.id}/delete`).then(({ ok, data }) => {
                            if (!ok) return showToast(data.error, 'danger');
                            document.querySelectorAll(`.comment-count[data-id="${ideaId}"]`).forEach(s => s.textContent = data.comments_count);
                            loadComments(ideaId);
                        });
                        div.appendChild(del);
                        }
                        el.appendChild(div);
                    });
                })
                .catch(err => console.error("Load comments error:", err));
        }

        const container = document.getElementById('ideas-container');
        container.addEventListener('click', function(e) {
            const likeBtn = e.target.closest('.like-btn');
            if (likeBtn) {
                const ideaId = likeBtn.dataset.id;
                postJSON(`/idea/${ideaId}/like`).then(({ ok, data }) => {
                    if (!ok) return showToast(data.error, 'warning');
                    document.querySelectorAll(`.like-count[data-id="${ideaId}"]`).forEach(s => s.textContent = data.likes);
                }).catch(err => showToast("Error: " + err.message, 'danger'));
                return;
            }
            const toggle = e.target.closest('.comments-toggle');
            if (toggle) {
                const box = document.getElementById('comment-section-' + toggle.dataset.id);
                box.classList.toggle('d-none');
                if (!box.classList.contains('d-none')) loadComments(toggle.dataset.id);
            }
        });
        container.addEventListener('submit', function(e) {
            if (!e.target.matches('.comment-form')) return;
            e.preventDefault();
            const ideaId = e.target.dataset.id;
            const input = e.target.querySelector('input[name="text"]');
            const text = input.value.trim();
            if (!text) return;
            postJSON(`/idea/${ideaId}/comment`, { text }).then(({ ok, data }) => {
                if (!ok) return showToast(data.error, 'warning');
                input.value = '';
                document.querySelectorAll(`.comment-count[data-id="${ideaId}"]`).forEach(s => s.textContent = data.comments_count);
                loadComments(ideaId);
            }).catch(err => showToast("Error: " + err.message, 'danger'));
        });

        // Live refresh of counters; structural changes only announce themselves.
        const shownIds = {{ ideas | map(attribute='id') | list | tojson }};
        const shownTotal = {{ total | tojson }};
        setInterval(() => {
            fetch(`{{ url_for('api_ideas') }}` + window.location.search)
                .then(res => res.json())
                .then(data => {
                    if (!data.success) return;
                    data.ideas.forEach(i => {
                        document.querySelectorAll(`.like-count[data-id="${i.id}"]`).forEach(s => s.textContent = i.likes);
                        document.querySelectorAll(`.comment-count[data-id="${i.id}"]`).forEach(s => s.textContent = i.comments_count);
                    });
                    const ids = data.ideas.map(i => i.id);
                    if (data.total !== shownTotal || JSON.stringify(ids) !== JSON.stringify(shownIds)) {
                        document.getElementById('live-banner').style.display = 'flex';
                    }
                })
                .catch(err => console.error("Live update error:", err));
        }, {{ live_poll_seconds * 1000 }});

        // Comment moderation controls follow the admin's stored permissions.
        if (isAdmin) {
            setInterval(() => {
                fetch(`{{ url_for('admin_me') }}`, { headers: { 'Accept': 'application/json' } })
                    .then(res => res.status === 401 ? { success: true, permissions: [] } : res.json())
                    .then(data => {
                        if (!data.success) return;
                        canDeleteComments = data.permissions.includes('comments');
                        document.querySelectorAll('[data-permission="comments"]').forEach(el => el.classList.toggle('d-none', !canDeleteComments));
                    })
                    .catch(err => console.error("Permission sync error:", err));
            }, {{ live_poll_seconds * 1000 }});
        }
    });
</script>
{% endblock %}
"""

SUBMIT_HTML_TEMPLATE = """
{% extends "BASE_HTML_TEMPLATE" %}
{% block title %}Submit an Idea - IdeaBoard{% endblock %}
{% block content %}
<div class="card shadow-sm mx-auto" style="max-width: 720px;">
    <div class="card-body">
        <h2 class="h4 mb-3"><i class="fas fa-paper-plane me-2"></i>Submit an Idea</h2>
        <form method="POST" action="{{ url_for('submit_idea') }}" enctype="multipart/form-data" id="idea-form">
            <div class="mb-3">
                <label for="category" class="form-label">Category</label>
                <select class="form-select" id="category" name="category" required>
                    <option value="">-- Choose a category --</option>
                    {% for cat in categories %}<option value="{{ cat.name }}">{{ cat.name }}</option>{% endfor %}
                </select>
            </div>
            <div class="mb-3"><label for="title" class="form-label">Title</label><input type="text" class="form-control" id="title" name="title" required></div>
            <div class="mb-3"><label for="description" class="form-label">Description</label><textarea class="form-control" id="description" name="description" rows="5" required></textarea></div>
            <div class="row">
                <div class="col-md-6 mb-3"><label for="fullname" class="form-label">Full name</label><input type="text" class="form-control" id="fullname" name="fullname" required></div>
                <div class="col-md-6 mb-3"><label for="phone" class="form-label">Phone</label><input type="tel" class="form-control" id="phone" name="phone"></div>
            </div>
            <div class="mb-3"><label for="address" class="form-label">Address</label><input type="text" class="form-control" id="address" name="address"></div>
            <div class="mb-3"><label for="social-link" class="form-label">Social link</label><input type="url" class="form-control" id="social-link" name="social_link"></div>
            <div class="mb-3">
                <label for="images" class="form-label">Images (up to 3)</label>
                <input type="file" class="form-control" id="images" name="images" accept="image/*" multiple>
                <div id="image-preview" class="mt-2"></div>
            </div>
            <div class="mb-3">
                <label for="detail-file" class="form-label">Detail file (under 20KB)</label>
                <input type="file" class="form-control" id="detail-file" name="detail_file">
            </div>
            <button type="submit" class="btn btn-primary w-100">Submit</button>
        </form>
    </div>
</div>
{% endblock %}

{% block scripts %}
<script>
    document.getElementById('images').addEventListener('change', function(e) {
        const preview = document.getElementById('image-preview');
        preview.innerHTML = '';
        Array.from(e.target.files).slice(0, 3).forEach(file => {
            const img = document.createElement('img');
            img.src = URL.createObjectURL(file);
            img.className = 'idea-image';
            preview.appendChild(img);
        });
    });
    document.getElementById('idea-form').addEventListener('submit', function(e) {
        const detailFile = document.getElementById('detail-file').files[0];
        if (detailFile && detailFile.size > 20480) {
            e.preventDefault();
            showToast("The detail file must be under 20KB.", "danger");
        }
    });
</script>
{% endblock %}
"""

ADMIN_LOGIN_HTML_TEMPLATE = """
{% extends "BASE_HTML_TEMPLATE" %}
{% block title %}Admin Login - IdeaBoard{% endblock %}
{% block content %}
<div class="card shadow-sm mx-auto" style="max-width: 420px;" id="admin-login-ui">
    <div class="card-body">
        <h2 class="h4 mb-3 text-center"><i class="fas fa-user-shield me-2"></i>Administrator</h2>
        <form method="POST" action="{{ url_for('admin_login') }}">
            <div class="mb-3"><label for="admin-user" class="form-label">Username</label><input type="text" class="form-control" id="admin-user" name="username" required></div>
            <div class="mb-4"><label for="admin-pass" class="form-label">Password</label><input type="password" class="form-control" id="admin-pass" name="password" required></div>
            <button type="submit" class="btn btn-primary w-100" id="btn-login">Sign In</button>
        </form>
    </div>
</div>
{% endblock %}
"""

_ADMIN_ROW_TEMPLATE = """
<tr class="idea-row" data-id="{{ idea.id }}">
    <td class="text-muted fw-bold">{{ loop_index }}</td>
    <td title="{{ idea.title }}">{{ idea.title | truncate(60) }}</td>
    <td class="small">{{ idea.author_name }}</td>
    <td><span class="category-tag">{{ idea.category }}</span></td>
    <td>{% for img in idea.image_list[:2] %}<img src="{{ img }}" class="admin-img-thumb" alt="" data-lightbox>{% endfor %}</td>
    <td class="text-nowrap">
        {% if (idea.status or 'pending') == 'pending' %}
        <button class="btn btn-sm btn-primary approve-btn {{ '' if admin.has_permission('approve') else 'd-none' }}" data-permission="approve" data-id="{{ idea.id }}" title="Approve"><i class="fas fa-check"></i></button>
        {% endif %}
        <button class="btn btn-sm btn-warning edit-btn {{ '' if admin.has_permission('edit') else 'd-none' }}" data-permission="edit" data-id="{{ idea.id }}" title="Edit"><i class="fas fa-edit"></i></button>
        <button class="btn btn-sm btn-danger delete-btn {{ '' if admin.has_permission('delete') else 'd-none' }}" data-permission="delete" data-id="{{ idea.id }}" title="Delete"><i class="fas fa-trash"></i></button>
        <button class="btn btn-sm btn-secondary view-btn" data-id="{{ idea.id }}" title="View"><i class="fas fa-eye"></i></button>
    </td>
</tr>
"""

ADMIN_DASHBOARD_HTML_TEMPLATE = """
{% extends "BASE_HTML_TEMPLATE" %}
{% block title %}Admin Dashboard - IdeaBoard{% endblock %}
{% block content %}
<div id="admin-dashboard">
    <div class="d-flex justify-content-between align-items-center mb-3">
        <h2 class="h4 mb-0">Dashboard <small class="text-muted fs-6">({{ admin.username }}, {{ admin.role }})</small></h2>
        <div class="d-flex gap-2">
            <a href="{{ url_for('admin_accounts') }}" class="btn btn-sm btn-outline-secondary {{ '' if admin.has_permission('admins') else 'd-none' }}" data-permission="admins"><i class="fas fa-users-cog me-1"></i>Admins</a>
            <form method="POST" action="{{ url_for('admin_logout') }}"><button class="btn btn-sm btn-outline-danger" id="btn-logout"><i class="fas fa-sign-out-alt me-1"></i>Log out</button></form>
        </div>
    </div>

    <div class="row g-3 mb-4">
        <div class="col-md-4"><div class="card"><div class="card-body"><div class="small text-muted">Total ideas</div><div class="fs-3 fw-bold">{{ stats.total }}</div></div></div></div>
        <div class="col-md-4"><div class="card"><div class="card-body"><div class="small text-muted">Pending</div><div class="fs-3 fw-bold">{{ stats.pending }}</div></div></div></div>
        <div class="col-md-4"><div class="card"><div class="card-body"><div class="small text-muted">Approved</div><div class="fs-3 fw-bold">{{ stats.approved }}</div></div></div></div>
    </div>

    <div class="card mb-4 {{ '' if admin.has_permission('categories') else 'd-none' }}" data-permission="categories">
        <div class="card-body">
            <h3 class="h6">Categories</h3>
            <div id="categories-list" class="mb-2">
                {% for cat in categories %}
                <span class="category-chip">
                    <span class="cat-name">{{ cat.name }}</span>
                    <form method="POST" action="{{ url_for('delete_category', category_id=cat.id) }}" onsubmit="return confirm('Delete this category?');" class="d-inline">
                        <button class="btn btn-link btn-sm p-0 text-danger"><i class="fas fa-times"></i></button>
                    </form>
                </span>
                {% else %}
                <p class="text-muted small mb-0">No categories yet.</p>
                {% endfor %}
            </div>
            <form method="POST" action="{{ url_for('add_category') }}" class="d-flex gap-2">
                <input type="text" class="form-control form-control-sm" name="name" id="new-category-name" placeholder="New category name">
                <button class="btn btn-sm btn-primary" id="btn-add-category">Add</button>
            </form>
        </div>
    </div>

    <div class="card mb-4">
        <div class="card-body">
            <h3 class="h6">Pending ideas</h3>
            <table class="table table-sm align-middle mb-0">
                <tbody id="pending-container">
                {% for idea in pending_ideas %}
                    {% set loop_index = pending_offset + loop.index %}
                    {% include '_ADMIN_ROW_TEMPLATE' %}
                {% else %}
                    <tr><td class="text-center text-muted p-3">No data.</td></tr>
                {% endfor %}
                </tbody>
            </table>
            {% with current_page=pending_page, total_pages=pending_total_pages, page_links=pending_links, page_url=pending_page_url %}
                {% include '_PAGINATION_TEMPLATE' %}
            {% endwith %}
        </div>
    </div>

    <div class="card">
        <div class="card-body">
            <h3 class="h6">Approved ideas</h3>
            <form method="get" action="{{ url_for('admin_home') }}" class="row g-2 mb-3" id="admin-filters">
                <div class="col-md-6"><input type="search" class="form-control form-control-sm" name="q" id="admin-search" value="{{ admin_search }}" placeholder="Search by title or author..."></div>
                <div class="col-md-4">
                    <select class="form-select form-select-sm" name="category" id="admin-category-filter" onchange="this.form.submit()">
                        <option value="all">All categories</option>
                        {% for cat in categories %}<option value="{{ cat.name }}" {{ 'selected' if cat.name == admin_category else '' }}>{{ cat.name }}</option>{% endfor %}
                    </select>
                </div>
                <div class="col-md-2"><button class="btn btn-sm btn-primary w-100">Filter</button></div>
            </form>
            <table class="table table-sm align-middle mb-0">
                <tbody id="all-ideas-container">
                {% for idea in approved_ideas %}
                    {% set loop_index = approved_offset + loop.index %}
                    {% include '_ADMIN_ROW_TEMPLATE' %}
                {% else %}
                    <tr><td class="text-center text-muted p-3">No data.</td></tr>
                {% endfor %}
                </tbody>
            </table>
            {% with current_page=approved_page, total_pages=approved_total_pages, page_links=approved_links, page_url=approved_page_url %}
                {% include '_PAGINATION_TEMPLATE' %}
            {% endwith %}
        </div>
    </div>
</div>
{% endblock %}

{% block scripts %}
<script>
    document.addEventListener('DOMContentLoaded', function() {
        const dashboard = document.getElementById('admin-dashboard');
        dashboard.addEventListener('click', function(e) {
            const btn = e.target.closest('button[data-id]');
            if (!btn) return;
            const ideaId = btn.dataset.id;

            if (btn.classList.contains('approve-btn')) {
                postJSON(`/admin/idea/${ideaId}/approve`).then(({ ok, data }) => {
                    if (!ok) return showToast(data.error, 'danger');
                    showToast("Idea approved!", 'success');
                    location.reload();
                });
            } else if (btn.classList.contains('delete-btn')) {
                if (!confirm("Delete this idea?")) return;
                postJSON(`/admin/idea/${ideaId}/delete`).then(({ ok, data }) => {
                    if (!ok) return showToast(data.error, 'danger');
                    location.reload();
                });
            } else if (btn.classList.contains('edit-btn') || btn.classList.contains('view-btn')) {
                fetch(`/admin/idea/${ideaId}`, { headers: { 'Accept': 'application/json' } })
                    .then(res => res.json())
                    .then(data => {
                        if (!data.success) return showToast(data.error, 'danger');
                        const idea = data.idea;
                        if (btn.classList.contains('view-btn')) {
                            alert(`IDEA DETAILS\\n\\nTitle: ${idea.title}\\nDescription: ${idea.description}\\nAuthor: ${idea.author_name}\\nPhone: ${idea.author_phone || ''}\\nAddress: ${idea.author_address || ''}\\n\\nUse "Edit" to change the content.`);
                            return;
                        }
                        const title = prompt("Title:", idea.title);
                        const description = prompt("Description:", idea.description);
                        if (!title || !description) return;
                        postJSON(`/admin/idea/${ideaId}/edit`, { title, description }).then(({ ok, data }) => {
                            if (!ok) return showToast(data.error, 'danger');
                            location.reload();
                        });
                    });
            }
        });

        // Keep visible controls in step with the permissions stored for this admin.
        setInterval(() => {
            fetch(`{{ url_for('admin_me') }}`, { headers: { 'Accept': 'application/json' } })
                .then(res => {
                    if (res.status === 401) { location.reload(); return null; }
                    return res.json();
                })
                .then(data => {
                    if (!data || !data.success) return;
                    document.querySelectorAll('[data-permission]').forEach(el => {
                        el.classList.toggle('d-none', !data.permissions.includes(el.dataset.permission));
                    });
                })
                .catch(err => console.error("Permission sync error:", err));
        }, {{ live_poll_seconds * 1000 }});
    });
</script>
{% endblock %}
"""

ADMIN_ACCOUNTS_HTML_TEMPLATE = """
{% extends "BASE_HTML_TEMPLATE" %}
{% block title %}Admin Accounts - IdeaBoard{% endblock %}
{% block content %}
<div class="d-flex justify-content-between align-items-center mb-3">
    <h2 class="h4 mb-0">Admin accounts</h2>
    <a href="{{ url_for('admin_home') }}" class="btn btn-sm btn-outline-secondary"><i class="fas fa-arrow-left me-1"></i>Dashboard</a>
</div>
<div class="card mb-4"><div class="card-body">
    <table class="table table-sm align-middle mb-0">
        <thead><tr><th>Username</th><th>Role</th><th>Permissions</th><th></th></tr></thead>
        <tbody>
        {% for account in accounts %}
            <tr>
                <td>{{ account.username }}</td>
                <td>{{ account.role }}</td>
                <td>
                    {% if account.is_superadmin %}
                        <span class="text-muted small">all</span>
                    {% else %}
                    <form method="POST" action="{{ url_for('update_admin_permissions', account_id=account.id) }}" class="d-flex flex-wrap gap-2 align-items-center">
                        {% for p in permissions %}
                        <label class="small"><input type="checkbox" name="permissions" value="{{ p }}" {{ 'checked' if account.has_permission(p) else '' }}> {{ p }}</label>
                        {% endfor %}
                        <button class="btn btn-sm btn-outline-primary">Save</button>
                    </form>
                    {% endif %}
                </td>
                <td>
                    {% if account.id != admin.id %}
                    <form method="POST" action="{{ url_for('delete_admin_account', account_id=account.id) }}" onsubmit="return confirm('Delete this admin account?');">
                        <button class="btn btn-sm btn-danger"><i class="fas fa-trash"></i></button>
                    </form>
                    {% endif %}
                </td>
            </tr>
        {% endfor %}
        </tbody>
    </table>
</div></div>
<div class="card"><div class="card-body">
    <h3 class="h6">New admin</h3>
    <form method="POST" action="{{ url_for('admin_accounts') }}" class="row g-2">
        <div class="col-md-4"><input type="text" class="form-control form-control-sm" name="username" placeholder="Username" required></div>
        <div class="col-md-4"><input type="password" class="form-control form-control-sm" name="password" placeholder="Password" required></div>
        <div class="col-md-12 d-flex flex-wrap gap-3">
            {% for p in permissions %}<label class="small"><input type="checkbox" name="permissions" value="{{ p }}"> {{ p }}</label>{% endfor %}
        </div>
        <div class="col-md-3"><button class="btn btn-sm btn-primary w-100">Create</button></div>
    </form>
</div></div>
{% endblock %}
"""

ERROR_404_TEMPLATE = """{% extends "BASE_HTML_TEMPLATE" %}{% block title %}404 Not Found{% endblock %}{% block content %}<div class='text-center my-5 p-4 card mx-auto' style='max-width: 600px;'><h1><i class='fas fa-exclamation-triangle text-warning me-2'></i>404 - Page Not Found</h1><p class='lead'>Sorry, the page you are looking for does not exist or has been moved.</p><a href='{{url_for("index")}}' class='btn btn-primary mt-2'>Go to Homepage</a></div>{% endblock %}"""
ERROR_500_TEMPLATE = """{% extends "BASE_HTML_TEMPLATE" %}{% block title %}500 Server Error{% endblock %}{% block content %}<div class='text-center my-5 p-4 card mx-auto' style='max-width: 600px;'><h1><i class='fas fa-cogs text-danger me-2'></i>500 - Internal Server Error</h1><p class='lead'>Something went wrong on our end. Please try again later.</p><a href='{{url_for("index")}}' class='btn btn-primary mt-2'>Go to Homepage</a></div>{% endblock %}"""

# ==============================================================================
# --- 7. Add all templates to the template_storage dictionary ---
# ==============================================================================
template_storage['BASE_HTML_TEMPLATE'] = BASE_HTML_TEMPLATE
template_storage['_PAGINATION_TEMPLATE'] = _PAGINATION_TEMPLATE
template_storage['_IDEA_CARD_TEMPLATE'] = _IDEA_CARD_TEMPLATE
template_storage['INDEX_HTML_TEMPLATE'] = INDEX_HTML_TEMPLATE
template_storage['SUBMIT_HTML_TEMPLATE'] = SUBMIT_HTML_TEMPLATE
template_storage['ADMIN_LOGIN_HTML_TEMPLATE'] = ADMIN_LOGIN_HTML_TEMPLATE
template_storage['_ADMIN_ROW_TEMPLATE'] = _ADMIN_ROW_TEMPLATE
template_storage['ADMIN_DASHBOARD_HTML_TEMPLATE'] = ADMIN_DASHBOARD_HTML_TEMPLATE
template_storage['ADMIN_ACCOUNTS_HTML_TEMPLATE'] = ADMIN_ACCOUNTS_HTML_TEMPLATE
template_storage['404_TEMPLATE'] = ERROR_404_TEMPLATE
template_storage['500_TEMPLATE'] = ERROR_500_TEMPLATE


# ==============================================================================
# --- 8. App Context & Main Execution Block ---
# ==============================================================================
init_db()

if __name__ == '__main__':
    port = int(os.environ.get("PORT", 8080))
    debug_mode = os.environ.get('FLASK_DEBUG', 'False').lower() in ('true', '1', 't')
    app.logger.info(f"Starting Flask app in {'debug' if debug_mode else 'production'} mode on port {port}")
    app.run(host='0.0.0.0', port=port, debug=debug_mode)
