import logging
from datetime import datetime

from errors import Forbidden, InvalidTransition, TicketNotFound, ValidationFailed
from models import (Attachment, CATEGORIES, PRIORITIES, ROLE_ADMIN, ROLE_WORKER, ROLES, STATUSES,
                    STATUS_CLOSED, STATUS_IN_PROGRESS, STATUS_OPEN, STATUS_RESOLVED, Solution, Ticket,
                    TicketMessage, name_snapshot, new_id)
from permissions import (can_assign, can_change_role, can_create, can_delete, can_manage, can_view,
                         is_creator)
from storage import MAX_FILE_SIZE

logger = logging.getLogger(__name__)

TITLE_MIN, TITLE_MAX = 5, 100
DESCRIPTION_MIN, DESCRIPTION_MAX = 10, 1000
MESSAGE_MIN, MESSAGE_MAX = 1, 1000
SOLUTION_MIN, SOLUTION_MAX = 10, 2000
MAX_ATTACHMENTS = 3

# Status edits allowed through update_status. Resolved is only reachable via resolve().
EXPLICIT_TRANSITIONS = {
    STATUS_OPEN: (STATUS_IN_PROGRESS, STATUS_CLOSED),
    STATUS_IN_PROGRESS: (STATUS_CLOSED,),
    STATUS_RESOLVED: (STATUS_CLOSED,),
    STATUS_CLOSED: (),
}


class TicketResult:
    """Changed ticket (None after delete) plus warnings from notifications and object cleanup."""

    def __init__(self, ticket, warnings=None):
        self.ticket = ticket
        self.warnings = warnings or []


def reopen_status(ticket):
    """Status a resolved ticket returns to when its creator replies."""
    return STATUS_IN_PROGRESS if ticket.assigned_to else STATUS_OPEN


def _check_length(errors, name, value, low, high):
    if len(value) < low:
        errors.setdefault(name, []).append(f'must be at least {low} characters')
    elif len(value) > high:
        errors.setdefault(name, []).append(f'must be {high} characters or less')


class LifecycleEngine:

    def __init__(self, tickets, profiles, storage=None, notifier=None):
        self.tickets = tickets
        self.profiles = profiles
        self.storage = storage
        self.notifier = notifier

    # --- reads ---

    def get_ticket(self, ticket_id, profile):
        """Missing and hidden tickets look the same to the caller."""
        ticket = self.tickets.get(ticket_id)
        if ticket is None or not can_view(profile.role, profile.uid, ticket):
            raise TicketNotFound()
        return ticket

    # --- mutations ---

    def create_ticket(self, profile, title, description, priority, category, attachments=()):
        if not can_create(profile.role):
            raise Forbidden('your role cannot create tickets')
        title = (title or '').strip()
        description = (description or '').strip()
        errors = {}
        _check_length(errors, 'title', title, TITLE_MIN, TITLE_MAX)
        _check_length(errors, 'description', description, DESCRIPTION_MIN, DESCRIPTION_MAX)
        if priority not in PRIORITIES:
            errors.setdefault('priority', []).append('invalid priority')
        if category not in CATEGORIES:
            errors.setdefault('category', []).append('invalid category')
        refs = self._attachment_refs(attachments, errors)
        if errors:
            raise ValidationFailed(errors=errors)

        ticket = Ticket(
            id=new_id(),
            title=title,
            description=description,
            status=STATUS_OPEN,
            priority=priority,
            category=category,
            created_by=profile.uid,
            created_by_name=name_snapshot(profile),
            attachments=refs,
            messages=[],
        )
        self.tickets.add(ticket)
        logger.info('Ticket %s created by %s', ticket.id, profile.uid)
        warnings = self._notify(self.notifier and self.notifier.ticket_created, ticket, profile)
        return TicketResult(ticket, warnings)

    def add_message(self, ticket_id, message, profile):
        text = (message or '').strip()
        errors = {}
        _check_length(errors, 'message', text, MESSAGE_MIN, MESSAGE_MAX)
        if errors:
            raise ValidationFailed(errors=errors)

        ticket = self.get_ticket(ticket_id, profile)
        if ticket.status == STATUS_CLOSED:
            raise InvalidTransition('ticket is closed')
        fields = {}
        if ticket.status == STATUS_RESOLVED:
            if not is_creator(profile.uid, ticket):
                raise InvalidTransition('ticket is resolved; only its creator can reopen it by replying')
            fields['status'] = reopen_status(ticket)

        entry = TicketMessage(
            id=new_id(),
            position=len(ticket.messages),
            sender_id=profile.uid,
            sender_display_name=name_snapshot(profile),
            sender_role=profile.role,
            message=text,
            timestamp=datetime.utcnow(),
        )
        self.tickets.update(ticket, apply=lambda t: t.messages.append(entry), **fields)
        if fields:
            logger.info('Ticket %s reopened to %s by creator reply', ticket.id, fields['status'])

        recipients = self._recipients(ticket, (ticket.created_by, ticket.created_by_name),
                                      (ticket.assigned_to, ticket.assigned_to_name), exclude=profile.uid)
        warnings = []
        if recipients:
            warnings = self._notify(self.notifier and self.notifier.reply_added, ticket, entry, recipients)
        return TicketResult(ticket, warnings)

    def update_status(self, ticket_id, status, profile):
        if status not in STATUSES:
            raise ValidationFailed(errors={'status': ['invalid status']})
        ticket = self.get_ticket(ticket_id, profile)
        if not can_manage(profile.role, profile.uid, ticket):
            raise Forbidden('you cannot manage this ticket')
        if status == STATUS_RESOLVED:
            raise InvalidTransition('use the resolve operation to resolve a ticket')
        if status not in EXPLICIT_TRANSITIONS[ticket.status]:
            raise InvalidTransition(f'cannot change status from {ticket.status} to {status}')

        previous = ticket.status
        self.tickets.update(ticket, status=status)
        logger.info('Ticket %s status %s -> %s by %s', ticket.id, previous, status, profile.uid)
        return TicketResult(ticket, self._notify_creator(ticket, profile, 'status_changed'))

    def confirm_resolution(self, ticket_id, profile):
        """The creator accepts the solution, closing the ticket."""
        ticket = self.get_ticket(ticket_id, profile)
        if not is_creator(profile.uid, ticket):
            raise Forbidden('only the ticket creator can confirm the resolution')
        if ticket.status != STATUS_RESOLVED:
            raise InvalidTransition('only resolved tickets can be confirmed')
        self.tickets.update(ticket, status=STATUS_CLOSED)
        logger.info('Ticket %s closed by creator', ticket.id)
        return TicketResult(ticket)

    def assign(self, ticket_id, worker_uid, worker_name, profile):
        if not can_assign(profile.role):
            raise Forbidden('only admins can assign tickets')
        ticket = self.get_ticket(ticket_id, profile)
        if ticket.status == STATUS_CLOSED:
            raise InvalidTransition('closed tickets cannot be assigned')
        assignee = self.profiles.get(worker_uid)
        if assignee is None or assignee.role not in (ROLE_WORKER, ROLE_ADMIN):
            raise ValidationFailed(errors={'worker_uid': ['assignee must be a worker or admin']})

        self.tickets.update(ticket,
                            assigned_to=assignee.uid,
                            assigned_to_name=worker_name or name_snapshot(assignee),
                            status=STATUS_IN_PROGRESS)
        logger.info('Ticket %s assigned to %s', ticket.id, assignee.uid)

        warnings = []
        if self.notifier is not None and assignee.email:
            creator = None
            if ticket.created_by != profile.uid:
                creator = self._recipient(ticket.created_by, ticket.created_by_name)
            warnings = self._notify(self.notifier.assigned, ticket,
                                    {'email': assignee.email, 'name': assignee.display_name}, creator)
        return TicketResult(ticket, warnings)

    def resolve(self, ticket_id, solution_text, attachments, profile):
        text = (solution_text or '').strip()
        errors = {}
        _check_length(errors, 'solution_text', text, SOLUTION_MIN, SOLUTION_MAX)
        refs = self._attachment_refs(attachments, errors, ticket_id=ticket_id)
        if errors:
            raise ValidationFailed(errors=errors)

        ticket = self.get_ticket(ticket_id, profile)
        if not can_manage(profile.role, profile.uid, ticket):
            raise Forbidden('you cannot manage this ticket')
        if ticket.status != STATUS_IN_PROGRESS:
            raise InvalidTransition(f'cannot resolve a ticket that is {ticket.status}')

        kept = {r.file_key for r in refs}
        stale_keys = []

        def apply(t):
            if t.solution is None:
                t.solution = Solution(ticket_id=t.id)
            else:
                stale_keys.extend(a.file_key for a in t.solution.attachments
                                  if a.file_key not in kept)
            t.solution.text = text
            t.solution.resolved_by_uid = profile.uid
            t.solution.resolved_by_name = name_snapshot(profile)
            t.solution.resolved_at = datetime.utcnow()
            t.solution.attachments = refs

        self.tickets.update(ticket, apply=apply, status=STATUS_RESOLVED)
        logger.info('Ticket %s resolved by %s', ticket.id, profile.uid)

        warnings = self._delete_objects(stale_keys)
        warnings.extend(self._notify_creator(ticket, profile, 'resolved'))
        return TicketResult(ticket, warnings)

    def delete(self, ticket_id, profile):
        if not can_delete(profile.role):
            raise Forbidden('only admins can delete tickets')
        ticket = self.tickets.get(ticket_id)
        if ticket is None:
            raise TicketNotFound()
        keys = []
        for att in ticket.all_attachments():
            if att.file_key in keys:
                continue
            if self.tickets.holders(att.file_key) - {ticket.id}:
                logger.warning('Object %s is still attached to another ticket, not deleted', att.file_key)
                continue
            keys.append(att.file_key)
        warnings = self._delete_objects(keys)
        self.tickets.delete(ticket)
        logger.info('Ticket %s deleted by %s (%d attachment warnings)', ticket_id, profile.uid, len(warnings))
        return TicketResult(None, warnings)

    def change_role(self, target_uid, role, profile):
        if role not in ROLES:
            raise ValidationFailed(errors={'role': ['invalid role']})
        if not can_change_role(profile.role, profile.uid, target_uid):
            raise Forbidden('you cannot change this role')
        target = self.profiles.set_role(target_uid, role)
        logger.info('Role of %s set to %s by %s', target_uid, role, profile.uid)
        return target

    # --- helpers ---

    def _attachment_refs(self, attachments, errors, ticket_id=None):
        """Attachment rows for uploaded objects not held by any other ticket."""
        attachments = list(attachments or [])
        if len(attachments) > MAX_ATTACHMENTS:
            errors.setdefault('attachments', []).append(f'at most {MAX_ATTACHMENTS} files')
            return []
        refs, seen = [], set()
        for position, item in enumerate(attachments):
            key = item.get('file_key')
            if not item.get('name') or not item.get('url') or not key:
                errors.setdefault('attachments', []).append('attachment needs name, url and file_key')
                continue
            try:
                size = int(item.get('size') or 0)
            except (TypeError, ValueError):
                size = -1
            if size < 0:
                errors.setdefault('attachments', []).append(f"{item['name']} has an invalid size")
                continue
            if size > MAX_FILE_SIZE:
                errors.setdefault('attachments', []).append(f"{item['name']} exceeds the size limit")
                continue
            if key in seen:
                errors.setdefault('attachments', []).append(f"{item['name']} is listed twice")
                continue
            seen.add(key)
            if self.storage is not None and not self.storage.exists(key):
                errors.setdefault('attachments', []).append(f"{item['name']} has not been uploaded")
                continue
            if self.tickets.holders(key) - {ticket_id}:
                errors.setdefault('attachments', []).append(f"{item['name']} is attached to another ticket")
                continue
            refs.append(Attachment(
                id=new_id(),
                position=position,
                name=item['name'],
                url=item['url'],
                type=item.get('type') or 'application/octet-stream',
                size=size,
                file_key=key,
            ))
        return refs

    def _delete_objects(self, keys):
        warnings = []
        if self.storage is None:
            return warnings
        for key in keys:
            try:
                self.storage.delete(key)
            except Exception as e:
                logger.warning('Could not delete attachment object %s: %s', key, e)
                warnings.append(f'attachment {key} could not be deleted: {e}')
        return warnings

    def _recipient(self, uid, fallback_name=None):
        found = self.profiles.get(uid) if uid else None
        if found is None or not found.email:
            return None
        return {'email': found.email, 'name': found.display_name or fallback_name}

    def _recipients(self, ticket, *people, exclude=None):
        seen, out = set(), []
        for uid, fallback in people:
            if not uid or uid == exclude:
                continue
            rec = self._recipient(uid, fallback)
            if rec and rec['email'] not in seen:
                seen.add(rec['email'])
                out.append(rec)
        return out

    def _notify_creator(self, ticket, actor, kind):
        if self.notifier is None or ticket.created_by == actor.uid:
            return []
        rec = self._recipient(ticket.created_by, ticket.created_by_name)
        if rec is None:
            logger.warning('No e-mail for creator of ticket %s, %s notification skipped', ticket.id, kind)
            return []
        return self._notify(getattr(self.notifier, kind), ticket, rec)

    def _notify(self, send, *args):
        if not send:
            return []
        try:
            results = send(*args) or []
        except Exception as e:
            logger.warning('Notification failed: %s', e)
            return [f'notification failed: {e}']
        return [f"notification not sent: {r.get('error') or r.get('message')}"
                for r in results if not r.get('success')]
