import logging
import threading

from models import ROLE_ADMIN, ROLE_WORKER
from permissions import can_view

logger = logging.getLogger(__name__)


def scope_for(profile, status=None, priority=None, search=None):
    """Store query arguments for the tickets a profile may list.

    Status/priority filters and search only apply to admins.
    """
    if profile.role == ROLE_ADMIN:
        return {
            'status': None if status in (None, '', 'all') else status,
            'priority': None if priority in (None, '', 'all') else priority,
            'search': search or None,
        }
    if profile.role == ROLE_WORKER:
        return {'assigned_to': profile.uid}
    return {'created_by': profile.uid}


class Subscription:
    """Handle for a live query. ``cancel()`` may be called any number of times."""

    def __init__(self, load, callback, ticket_id=None):
        self._load = load
        self._callback = callback
        self._ticket_id = ticket_id
        self._lock = threading.RLock()
        self._active = True
        self._unwatch = None

    @property
    def active(self):
        return self._active

    def _on_change(self, ticket_id):
        if self._ticket_id is not None and ticket_id != self._ticket_id:
            return
        self.refresh()

    def refresh(self):
        with self._lock:
            if not self._active:
                return
            self._callback(self._load())

    def cancel(self):
        with self._lock:
            if not self._active:
                return
            self._active = False
            unwatch, self._unwatch = self._unwatch, None
        if unwatch is not None:
            unwatch()


class SubscriptionRouter:

    def __init__(self, tickets, profiles=None):
        self.tickets = tickets
        self.profiles = profiles

    def snapshot(self, profile, status=None, priority=None, search=None):
        found = self.tickets.find(**scope_for(profile, status, priority, search))
        return [t for t in found if can_view(profile.role, profile.uid, t)]

    def load_ticket(self, ticket_id, profile):
        ticket = self.tickets.get(ticket_id)
        if ticket is None or not can_view(profile.role, profile.uid, ticket):
            return None
        return ticket

    def _current(self, profile):
        # role changes made while a subscription is open apply on its next emission
        if self.profiles is None:
            return profile
        return self.profiles.get(profile.uid)

    def subscribe(self, profile, callback, status=None, priority=None):
        """Call ``callback(tickets)`` now and after every ticket change until cancelled."""
        def load():
            current = self._current(profile)
            return self.snapshot(current, status, priority) if current is not None else []
        return self._start(Subscription(load, callback))

    def subscribe_ticket(self, ticket_id, profile, callback):
        """Call ``callback(ticket or None)`` for one ticket.

        Visibility is re-checked on every emission with the caller's current
        role, so a worker who loses the assignment or a demoted admin gets
        ``None`` on the next change.
        """
        def load():
            current = self._current(profile)
            return self.load_ticket(ticket_id, current) if current is not None else None
        return self._start(Subscription(load, callback, ticket_id=ticket_id))

    def _start(self, sub):
        sub._unwatch = self.tickets.watch(sub._on_change)
        sub.refresh()
        return sub
