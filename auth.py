import logging
from collections import namedtuple
from datetime import datetime, timedelta
from functools import wraps

import jwt
from flask import current_app, jsonify, request
from flask_login import current_user
from werkzeug.security import check_password_hash, generate_password_hash

from models import Credential, new_id

logger = logging.getLogger(__name__)

Identity = namedtuple('Identity', 'uid email display_name photo_url')


def identity_of(credential):
    return Identity(credential.uid, credential.email, credential.display_name, credential.photo_url)


def register(credentials, email, password, display_name=None, photo_url=None):
    """Create sign-in credentials. Returns None when the e-mail is taken."""
    email = email.lower()
    if credentials.by_email(email):
        return None
    cred = Credential(
        uid=new_id(),
        email=email,
        display_name=display_name,
        photo_url=photo_url,
        password_hash=generate_password_hash(password),
    )
    return credentials.add(cred)


def sign_in(credentials, email, password):
    cred = credentials.by_email(email or '')
    if cred is None or not check_password_hash(cred.password_hash, password or ''):
        return None
    return identity_of(cred)


def generate_jwt(profile):
    payload = {
        'sub': profile.uid,
        'exp': datetime.utcnow() + timedelta(seconds=current_app.config['JWT_EXP_SECONDS'])
    }
    return jwt.encode(payload, current_app.config['JWT_SECRET'], algorithm='HS256')


def auth_required(f):
    """Accept a Bearer JWT or a Flask-Login session; sets request.current_user to the profile."""
    @wraps(f)
    def decorated(*args, **kwargs):
        profiles = current_app.extensions['helpdesk'].profiles
        auth = request.headers.get('Authorization', None)
        if auth:
            parts = auth.split()
            if len(parts) != 2 or parts[0].lower() != 'bearer':
                return jsonify({'error': 'invalid auth header'}), 401
            try:
                payload = jwt.decode(parts[1], current_app.config['JWT_SECRET'], algorithms=['HS256'])
            except jwt.InvalidTokenError as e:
                return jsonify({'error': 'invalid token', 'msg': str(e)}), 401
            user = profiles.get(payload.get('sub'))
            if not user:
                return jsonify({'error': 'user not found'}), 401
        elif current_user.is_authenticated:
            user = current_user._get_current_object()
        else:
            return jsonify({'error': 'authorization required'}), 401
        request.current_user = user
        return f(*args, **kwargs)
    return decorated
