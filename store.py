import logging
import threading
from datetime import datetime

from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError

from errors import NotFound, StoreError
from models import Attachment, Credential, ROLE_USER, Solution, Ticket, UserProfile

logger = logging.getLogger(__name__)


class BaseStore:
    """Shares one scoped session; every mutation is a single commit."""

    def __init__(self, session):
        self.session = session

    def _commit(self):
        try:
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error('Store commit failed: %s', e)
            raise StoreError('store unavailable, please retry') from e


class ProfileStore(BaseStore):

    def get(self, uid):
        if not uid:
            return None
        return self.session.get(UserProfile, uid, populate_existing=True)

    def ensure_profile(self, identity):
        """Create the profile for a signed-in identity the first time it is seen."""
        profile = self.get(identity.uid)
        if profile is not None:
            return profile
        profile = UserProfile(
            uid=identity.uid,
            email=identity.email,
            display_name=identity.display_name,
            photo_url=identity.photo_url,
            role=ROLE_USER,
            created_at=datetime.utcnow(),
        )
        self.session.add(profile)
        self._commit()
        logger.info('Created profile for %s', identity.uid)
        return profile

    def set_role(self, uid, role):
        profile = self.get(uid)
        if profile is None:
            raise NotFound('user not found')
        profile.role = role
        self._commit()
        return profile

    def list_profiles(self, roles=None):
        q = self.session.query(UserProfile)
        if roles:
            q = q.filter(UserProfile.role.in_(list(roles)))
        return q.order_by(UserProfile.display_name.asc()).all()


class CredentialStore(BaseStore):

    def by_email(self, email):
        return self.session.query(Credential).filter_by(email=email.lower()).first()

    def get(self, uid):
        return self.session.get(Credential, uid)

    def add(self, credential):
        self.session.add(credential)
        self._commit()
        return credential


class TicketStore(BaseStore):
    """Ticket documents plus an in-process change feed.

    Listeners are called with the id of the changed ticket after the change
    is committed, on the thread that made the change.
    """

    def __init__(self, session):
        super().__init__(session)
        self._listeners = []
        self._lock = threading.Lock()

    def get(self, ticket_id):
        if not ticket_id:
            return None
        return (self.session.query(Ticket)
                .populate_existing()
                .filter(Ticket.id == ticket_id)
                .first())

    def find(self, created_by=None, assigned_to=None, status=None, priority=None, search=None):
        q = self.session.query(Ticket).populate_existing()
        if created_by is not None:
            q = q.filter(Ticket.created_by == created_by)
        if assigned_to is not None:
            q = q.filter(Ticket.assigned_to == assigned_to)
        if status:
            q = q.filter(Ticket.status == status)
        if priority:
            q = q.filter(Ticket.priority == priority)
        if search:
            like = f'%{search}%'
            q = q.filter(or_(Ticket.title.ilike(like),
                             Ticket.description.ilike(like),
                             Ticket.created_by_name.ilike(like)))
        return q.order_by(Ticket.updated_at.desc(), Ticket.created_at.desc()).all()

    def owner_of(self, file_key):
        """Ticket holding an attachment object, directly or through its solution."""
        att = self.session.query(Attachment).filter_by(file_key=file_key).first()
        if att is None:
            return None
        if att.ticket_id:
            return self.get(att.ticket_id)
        solution = self.session.get(Solution, att.solution_id)
        return self.get(solution.ticket_id) if solution is not None else None

    def holders(self, file_key):
        """Ids of the tickets referencing an object, directly or through their solution."""
        ids = set()
        for att in self.session.query(Attachment).filter_by(file_key=file_key):
            if att.ticket_id:
                ids.add(att.ticket_id)
            elif att.solution_id:
                solution = self.session.get(Solution, att.solution_id)
                if solution is not None:
                    ids.add(solution.ticket_id)
        return ids

    def add(self, ticket):
        now = datetime.utcnow()
        ticket.created_at = now
        ticket.updated_at = now
        self.session.add(ticket)
        self._commit()
        self._publish(ticket.id)
        return ticket

    def update(self, ticket, apply=None, **fields):
        """Apply field changes (and an optional callable for nested changes) atomically."""
        for key, value in fields.items():
            setattr(ticket, key, value)
        if apply is not None:
            apply(ticket)
        ticket.updated_at = datetime.utcnow()
        self._commit()
        self._publish(ticket.id)
        return ticket

    def delete(self, ticket):
        ticket_id = ticket.id
        self.session.delete(ticket)
        self._commit()
        self._publish(ticket_id)

    def watch(self, listener):
        """Register ``listener(ticket_id)``; returns a callable that unregisters it."""
        with self._lock:
            self._listeners.append(listener)

        def unwatch():
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)
        return unwatch

    def _publish(self, ticket_id):
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(ticket_id)
            except Exception:
                logger.exception('Ticket change listener failed for %s', ticket_id)
