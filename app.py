import csv
import io
import json
import logging
import os
import queue
from types import SimpleNamespace

import click
from flask import (Blueprint, Flask, Response, current_app, jsonify, request, send_file,
                   send_from_directory, stream_with_context)
from flask_login import LoginManager, login_required, login_user, logout_user
from flask_mail import Mail
from sqlalchemy import create_engine
from sqlalchemy.orm import scoped_session, sessionmaker
from sqlalchemy.pool import StaticPool

import auth
from auth import auth_required
from config import Config
from errors import Forbidden, HelpdeskError, InvalidTransition, NotFound, ValidationFailed
from forms import (AssignForm, LoginForm, MessageForm, RegisterForm, ResolveForm, RoleForm, StatusForm,
                   TicketForm, TranslateForm)
from lifecycle import LifecycleEngine
from models import Base, ROLE_ADMIN, ROLE_WORKER, STATUSES
from notifications import NotificationDispatcher
from permissions import can_delete, can_view
from storage import ObjectStorage
from store import CredentialStore, ProfileStore, TicketStore
from subscriptions import SubscriptionRouter
from translation import Translator

login_manager = LoginManager()
mail = Mail()
bp = Blueprint('helpdesk', __name__)

STREAM_KEEPALIVE_SECONDS = 15


def services():
    return current_app.extensions['helpdesk']


def create_app(config_object=Config):
    app = Flask(__name__)
    app.config.from_object(config_object)
    logging.basicConfig(format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
                        level=app.config['LOG_LEVEL'])

    login_manager.init_app(app)
    mail.init_app(app)

    # DB setup
    uri = app.config['SQLALCHEMY_DATABASE_URI']
    engine_args = {}
    if uri.startswith('sqlite'):
        engine_args['connect_args'] = {'check_same_thread': False}
        if uri in ('sqlite://', 'sqlite:///:memory:'):
            engine_args['poolclass'] = StaticPool
    engine = create_engine(uri, **engine_args)
    Base.metadata.create_all(engine)
    db = scoped_session(sessionmaker(bind=engine, expire_on_commit=False))

    # ensure uploads dir exists
    os.makedirs(app.config['UPLOAD_FOLDER'], exist_ok=True)

    tickets = TicketStore(db)
    profiles = ProfileStore(db)
    storage = ObjectStorage(app.config['UPLOAD_FOLDER'], app.config['JWT_SECRET'], app.config['APP_BASE_URL'],
                            public_url_base=app.config.get('PUBLIC_URL_BASE'),
                            expires_in=app.config['UPLOAD_URL_EXPIRES'])
    notifier = NotificationDispatcher(app, mail)
    app.extensions['helpdesk'] = SimpleNamespace(
        db=db,
        credentials=CredentialStore(db),
        profiles=profiles,
        tickets=tickets,
        storage=storage,
        notifier=notifier,
        translator=Translator(app.config.get('TRANSLATE_API_URL'), app.config.get('TRANSLATE_API_KEY'),
                              timeout=app.config['TRANSLATE_TIMEOUT']),
        lifecycle=LifecycleEngine(tickets, profiles, storage, notifier),
        router=SubscriptionRouter(tickets, profiles),
    )

    @app.teardown_appcontext
    def shutdown_session(exception=None):
        db.remove()

    @app.errorhandler(HelpdeskError)
    def handle_helpdesk_error(e):
        if e.status_code >= 500:
            app.logger.error('%s: %s', type(e).__name__, e.message)
        return jsonify(e.to_dict()), e.status_code

    @app.cli.command('create-admin')
    @click.argument('email')
    @click.argument('password')
    @click.option('--name', default='Admin')
    def create_admin(email, password, name):
        """Register an account (if needed) and give it the admin role."""
        svc = app.extensions['helpdesk']
        cred = svc.credentials.by_email(email) or auth.register(svc.credentials, email, password, name)
        profile = svc.profiles.ensure_profile(auth.identity_of(cred))
        svc.profiles.set_role(profile.uid, ROLE_ADMIN)
        click.echo(f'Admin ready: {cred.email} ({cred.uid})')

    app.register_blueprint(bp)
    return app


@login_manager.user_loader
def load_user(user_id):
    return services().profiles.get(user_id)


def _validated(form_cls):
    form = form_cls()
    if not form.validate_on_submit():
        raise ValidationFailed(errors=form.errors)
    return form


def _result(result, status=200):
    body = {'ticket': result.ticket.to_dict() if result.ticket is not None else None,
            'warnings': result.warnings}
    return jsonify(body), status


def _json_attachments():
    data = request.get_json(silent=True) or {}
    attachments = data.get('attachments') or []
    if not isinstance(attachments, list) or not all(isinstance(a, dict) for a in attachments):
        raise ValidationFailed(errors={'attachments': ['must be a list of attachment objects']})
    return attachments


@bp.route('/')
def index():
    return jsonify({'name': current_app.config['APP_NAME'], 'statuses': list(STATUSES)})

# --- Session auth ---
@bp.route('/register', methods=['POST'])
def register():
    form = _validated(RegisterForm)
    cred = auth.register(services().credentials, form.email.data, form.password.data,
                         display_name=form.name.data, photo_url=form.photo_url.data or None)
    if cred is None:
        return jsonify({'error': 'user exists'}), 400
    return jsonify({'uid': cred.uid}), 201

@bp.route('/login', methods=['POST'])
def login():
    form = _validated(LoginForm)
    identity = auth.sign_in(services().credentials, form.email.data, form.password.data)
    if identity is None:
        return jsonify({'error': 'invalid credentials'}), 401
    profile = services().profiles.ensure_profile(identity)
    login_user(profile)
    return jsonify(profile.to_dict())

@bp.route('/logout', methods=['POST'])
@login_required
def logout():
    logout_user()
    return jsonify({'ok': True})

# --- REST API (JSON) with JWT support ---
@bp.route('/api/token', methods=['POST'])
def api_token():
    data = request.get_json(silent=True) or {}
    email = data.get('email')
    password = data.get('password')
    if not email or not password:
        return jsonify({'error': 'missing credentials'}), 400
    identity = auth.sign_in(services().credentials, email, password)
    if identity is None:
        return jsonify({'error': 'invalid credentials'}), 401
    profile = services().profiles.ensure_profile(identity)
    return jsonify({'token': auth.generate_jwt(profile), 'profile': profile.to_dict()})

@bp.route('/api/me', methods=['GET'])
@auth_required
def api_me():
    return jsonify(request.current_user.to_dict())

@bp.route('/api/tickets', methods=['GET'])
@auth_required
def api_list_tickets():
    tickets = services().router.snapshot(request.current_user,
                                         status=request.args.get('status'),
                                         priority=request.args.get('priority'),
                                         search=request.args.get('q'))
    return jsonify([t.to_dict(include_messages=False) for t in tickets])

@bp.route('/api/tickets', methods=['POST'])
@auth_required
def api_create_ticket():
    form = _validated(TicketForm)
    result = services().lifecycle.create_ticket(request.current_user, form.title.data, form.description.data,
                                                form.priority.data, form.category.data,
                                                attachments=_json_attachments())
    return _result(result, 201)

@bp.route('/api/tickets/<ticket_id>', methods=['GET'])
@auth_required
def api_ticket(ticket_id):
    ticket = services().lifecycle.get_ticket(ticket_id, request.current_user)
    return jsonify(ticket.to_dict())

@bp.route('/api/tickets/<ticket_id>', methods=['DELETE'])
@auth_required
def api_delete_ticket(ticket_id):
    result = services().lifecycle.delete(ticket_id, request.current_user)
    return jsonify({'ok': True, 'warnings': result.warnings})

@bp.route('/api/tickets/<ticket_id>/messages', methods=['POST'])
@auth_required
def api_add_message(ticket_id):
    form = _validated(MessageForm)
    return _result(services().lifecycle.add_message(ticket_id, form.message.data, request.current_user), 201)

@bp.route('/api/tickets/<ticket_id>/status', methods=['PUT'])
@auth_required
def api_update_status(ticket_id):
    form = _validated(StatusForm)
    return _result(services().lifecycle.update_status(ticket_id, form.status.data, request.current_user))

@bp.route('/api/tickets/<ticket_id>/assignment', methods=['PUT'])
@auth_required
def api_assign_ticket(ticket_id):
    form = _validated(AssignForm)
    return _result(services().lifecycle.assign(ticket_id, form.worker_uid.data, form.worker_name.data,
                                               request.current_user))

@bp.route('/api/tickets/<ticket_id>/resolve', methods=['POST'])
@auth_required
def api_resolve_ticket(ticket_id):
    form = _validated(ResolveForm)
    return _result(services().lifecycle.resolve(ticket_id, form.solution_text.data, _json_attachments(),
                                                request.current_user))

@bp.route('/api/tickets/<ticket_id>/confirm', methods=['POST'])
@auth_required
def api_confirm_resolution(ticket_id):
    return _result(services().lifecycle.confirm_resolution(ticket_id, request.current_user))

@bp.route('/api/stats', methods=['GET'])
@auth_required
def api_stats():
    tickets = services().router.snapshot(request.current_user)
    counts = {s: 0 for s in STATUSES}
    for t in tickets:
        counts[t.status] = counts.get(t.status, 0) + 1
    return jsonify({'total': len(tickets), 'by_status': counts})

# --- Live updates (server-sent events) ---
def _event_stream(start):
    events = queue.Queue()
    sub = start(events.put)

    def generate():
        try:
            while True:
                try:
                    payload = events.get(timeout=STREAM_KEEPALIVE_SECONDS)
                except queue.Empty:
                    yield ': keep-alive\n\n'
                    continue
                yield f'data: {json.dumps(payload)}\n\n'
        finally:
            sub.cancel()
    return Response(stream_with_context(generate()), mimetype='text/event-stream',
                    headers={'Cache-Control': 'no-cache', 'X-Accel-Buffering': 'no'})

@bp.route('/api/tickets/stream', methods=['GET'])
@auth_required
def api_tickets_stream():
    profile = request.current_user
    status = request.args.get('status')
    priority = request.args.get('priority')
    return _event_stream(lambda put: services().router.subscribe(
        profile, lambda tickets: put([t.to_dict(include_messages=False) for t in tickets]),
        status=status, priority=priority))

@bp.route('/api/tickets/<ticket_id>/stream', methods=['GET'])
@auth_required
def api_ticket_stream(ticket_id):
    profile = request.current_user
    return _event_stream(lambda put: services().router.subscribe_ticket(
        ticket_id, profile, lambda ticket: put(ticket.to_dict() if ticket is not None else None)))

# --- Attachments ---
@bp.route('/api/upload/presigned-url', methods=['GET'])
@auth_required
def api_presigned_url():
    grant = services().storage.issue_upload(request.args.get('filename'), request.args.get('content_type'))
    return jsonify(grant)

@bp.route('/api/uploads/<path:object_key>', methods=['PUT'])
def api_upload_object(object_key):
    stored = services().storage.put(object_key, request.get_data(),
                                    request.mimetype or 'application/octet-stream',
                                    request.args.get('credential'))
    return jsonify(stored), 201

@bp.route('/api/uploads/<path:object_key>', methods=['DELETE'])
@auth_required
def api_delete_object(object_key):
    svc = services()
    owner = svc.tickets.owner_of(object_key)
    if owner is not None and not can_delete(request.current_user.role):
        raise InvalidTransition('object is attached to a ticket')
    svc.storage.delete(object_key)
    return jsonify({'ok': True})

@bp.route('/files/<path:object_key>')
@auth_required
def uploaded_file(object_key):
    # serve attachment if the caller can view the ticket holding it
    svc = services()
    user = request.current_user
    owner = svc.tickets.owner_of(object_key)
    if owner is None or not can_view(user.role, user.uid, owner):
        raise NotFound('object not found')
    directory, filename = os.path.split(svc.storage.path_for(object_key))
    return send_from_directory(directory, filename)

# --- Translation ---
@bp.route('/api/translate', methods=['POST'])
@auth_required
def api_translate():
    form = _validated(TranslateForm)
    return jsonify(services().translator.translate(form.text.data, form.target_language.data,
                                                   form.source_language.data or None))

# --- Admin ---
def _require_admin():
    if request.current_user.role != ROLE_ADMIN:
        raise Forbidden()

@bp.route('/api/users', methods=['GET'])
@auth_required
def api_list_users():
    _require_admin()
    role = request.args.get('role')
    users = services().profiles.list_profiles([role] if role else None)
    return jsonify([u.to_dict() for u in users])

@bp.route('/api/users/assignable', methods=['GET'])
@auth_required
def api_assignable_users():
    _require_admin()
    users = services().profiles.list_profiles([ROLE_WORKER, ROLE_ADMIN])
    return jsonify([u.to_dict() for u in users])

@bp.route('/api/users/<uid>/role', methods=['PUT'])
@auth_required
def api_change_role(uid):
    form = _validated(RoleForm)
    profile = services().lifecycle.change_role(uid, form.role.data, request.current_user)
    return jsonify(profile.to_dict())

# CSV export (admin only)
@bp.route('/admin/export_csv')
@auth_required
def export_csv():
    _require_admin()
    tickets = services().router.snapshot(request.current_user)
    si = io.StringIO()
    cw = csv.writer(si)
    cw.writerow(['id', 'created_at', 'updated_at', 'title', 'category', 'priority', 'status',
                 'created_by', 'assigned_to', 'messages', 'attachments', 'resolved_at'])
    for t in tickets:
        cw.writerow([t.id, t.created_at.isoformat(), t.updated_at.isoformat(), t.title, t.category, t.priority,
                     t.status, t.created_by_name, t.assigned_to_name or '', len(t.messages),
                     len(t.all_attachments()), t.solution.resolved_at.isoformat() if t.solution else ''])
    output = io.BytesIO()
    output.write(si.getvalue().encode('utf-8'))
    output.seek(0)
    return send_file(output, mimetype='text/csv', as_attachment=True, download_name='tickets.csv')


if __name__ == '__main__':
    create_app().run(host='0.0.0.0', debug=True, threaded=True)
