import os
from dotenv import load_dotenv
load_dotenv()

basedir = os.path.abspath(os.path.dirname(__file__))

class Config:
    APP_NAME = os.environ.get('APP_NAME') or 'Helpdesk'
    APP_BASE_URL = (os.environ.get('APP_BASE_URL') or 'http://localhost:5000').rstrip('/')
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'change-this-to-a-strong-secret'
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or 'sqlite:///' + os.path.join(basedir, 'app.db')
    LOG_LEVEL = os.environ.get('LOG_LEVEL') or 'INFO'

    # JSON API forms are validated without CSRF tokens
    WTF_CSRF_ENABLED = bool(int(os.environ.get('WTF_CSRF_ENABLED') or 0))

    # Mail settings (Flask-Mail)
    MAIL_SERVER = os.environ.get('MAIL_SERVER')
    MAIL_PORT = int(os.environ.get('MAIL_PORT') or 25)
    MAIL_USERNAME = os.environ.get('MAIL_USERNAME')
    MAIL_PASSWORD = os.environ.get('MAIL_PASSWORD')
    MAIL_USE_TLS = bool(int(os.environ.get('MAIL_USE_TLS') or 0))
    MAIL_USE_SSL = bool(int(os.environ.get('MAIL_USE_SSL') or 0))
    MAIL_DEFAULT_SENDER = os.environ.get('MAIL_DEFAULT_SENDER')
    MAIL_ASYNC = bool(int(os.environ.get('MAIL_ASYNC') or 1))
    ADMIN_NOTIFICATION_EMAIL = os.environ.get('ADMIN_NOTIFICATION_EMAIL')

    # JWT
    JWT_SECRET = os.environ.get('JWT_SECRET') or 'change-this-jwt-secret'
    JWT_EXP_SECONDS = int(os.environ.get('JWT_EXP_SECONDS') or 3600)

    # Uploads (object storage bucket on local disk)
    UPLOAD_FOLDER = os.environ.get('UPLOAD_FOLDER') or os.path.join(basedir, 'uploads')
    MAX_CONTENT_LENGTH = 16 * 1024 * 1024  # 16 MB
    UPLOAD_URL_EXPIRES = int(os.environ.get('UPLOAD_URL_EXPIRES') or 300)
    PUBLIC_URL_BASE = os.environ.get('PUBLIC_URL_BASE')

    # Translation service (called server side only)
    TRANSLATE_API_URL = os.environ.get('TRANSLATE_API_URL')
    TRANSLATE_API_KEY = os.environ.get('TRANSLATE_API_KEY')
    TRANSLATE_TIMEOUT = float(os.environ.get('TRANSLATE_TIMEOUT') or 10)
