import logging
from threading import Thread

from flask_mail import Message
from markupsafe import escape

logger = logging.getLogger(__name__)


def _address(recipient):
    if isinstance(recipient, str):
        return recipient
    name = recipient.get('name')
    email = recipient['email']
    return (name, email) if name else email


def _paragraphs(text):
    return str(escape(text)).replace('\n', '<br>')


class NotificationDispatcher:
    """Sends ticket notifications through Flask-Mail.

    ``send`` never raises: the outcome is returned as
    ``{'success': bool, 'message'|'error': str}`` and failures are logged so
    the ticket operation that triggered them still succeeds.
    """

    def __init__(self, app, mail):
        self.app = app
        self.mail = mail

    @property
    def app_name(self):
        return self.app.config.get('APP_NAME') or 'Helpdesk'

    def ticket_link(self, ticket):
        return f"{self.app.config['APP_BASE_URL']}/tickets/{ticket.id}"

    def send(self, recipients, subject, html_body):
        recipients = [r for r in recipients if r and (isinstance(r, str) or r.get('email'))]
        if not recipients:
            return {'success': False, 'message': 'no recipients'}
        if not self.app.config.get('MAIL_DEFAULT_SENDER'):
            logger.warning('Mail sender not configured, notification "%s" not sent', subject)
            return {'success': False, 'message': 'mail sender not configured'}
        msg = Message(subject=subject,
                      recipients=[_address(r) for r in recipients],
                      html=html_body)
        if self.app.config.get('MAIL_ASYNC'):
            Thread(target=self._send_async, args=(msg,), daemon=True).start()
            return {'success': True, 'message': 'queued for background delivery, failures are only logged'}
        try:
            with self.app.app_context():
                self.mail.send(msg)
        except Exception as e:
            logger.warning('Mail send failed for "%s": %s', subject, e)
            return {'success': False, 'error': str(e)}
        return {'success': True, 'message': 'sent'}

    def _send_async(self, msg):
        with self.app.app_context():
            try:
                self.mail.send(msg)
            except Exception as e:
                logger.warning('Mail send failed for "%s": %s', msg.subject, e)

    def _footer(self, ticket):
        return (f'<p style="font-size: 0.9em; color: #555555;">This is an automated notification from '
                f'{escape(self.app_name)}. You can view the ticket '
                f'<a href="{escape(self.ticket_link(ticket))}">here</a>.</p>')

    def _ref(self, ticket):
        return f'{ticket.title} (#{ticket.id[:8]})'

    def ticket_created(self, ticket, creator):
        results = []
        body = (f'<h1>Ticket Created: {escape(ticket.title)}</h1>'
                f'<p>Your support ticket has been created with ID <strong>#{ticket.id}</strong>.</p>'
                f'<p><strong>Description:</strong> {_paragraphs(ticket.description)}</p>'
                f'<p><strong>Category:</strong> {escape(ticket.category)}<br>'
                f'<strong>Priority:</strong> {escape(ticket.priority)}</p>'
                + self._footer(ticket))
        if creator.email:
            results.append(self.send([{'email': creator.email, 'name': creator.display_name}],
                                     f'{self.app_name} Ticket Created: {self._ref(ticket)}', body))
        admin_email = self.app.config.get('ADMIN_NOTIFICATION_EMAIL')
        if admin_email:
            results.append(self.send([admin_email],
                                     f'New {self.app_name} Ticket: {ticket.title} by {ticket.created_by_name}',
                                     f'<h1>New Ticket Submission</h1>'
                                     f'<p>Created by <strong>{escape(ticket.created_by_name)}</strong>.</p>'
                                     + body))
        return results

    def reply_added(self, ticket, message, recipients):
        body = (f'<p>A new reply was added to <strong>{escape(self._ref(ticket))}</strong> by '
                f'<strong>{escape(message.sender_display_name)} ({escape(message.sender_role)})</strong>.</p>'
                f'<div style="padding: 10px; border-left: 3px solid #eee;">{_paragraphs(message.message)}</div>'
                + self._footer(ticket))
        return [self.send(recipients, f'New Reply on {self.app_name} Ticket: {self._ref(ticket)}', body)]

    def status_changed(self, ticket, recipient):
        name = escape(recipient.get('name') or ticket.created_by_name or 'User')
        if ticket.status == 'Resolved':
            subject = f"Update: Your {self.app_name} Ticket '{self._ref(ticket)}' Has Been Resolved"
            text = ('has been marked as <strong>Resolved</strong>. If the issue is not fully addressed, '
                    'reply to the ticket; otherwise no further action is needed.')
        elif ticket.status == 'Closed':
            subject = f"Your {self.app_name} Ticket '{self._ref(ticket)}' Has Been Closed"
            text = 'has been <strong>Closed</strong>. Submit a new ticket for any further questions.'
        else:
            subject = f'{self.app_name} Ticket Status Updated: {self._ref(ticket)} to {ticket.status}'
            text = f'has been updated to <strong>{escape(ticket.status)}</strong>.'
        body = (f'<p>Dear {name},</p><p>Your ticket <strong>{escape(self._ref(ticket))}</strong> {text}</p>'
                + self._footer(ticket))
        return [self.send([recipient], subject, body)]

    def assigned(self, ticket, assignee, creator=None):
        results = [self.send(
            [assignee],
            f'New Ticket Assignment: {self._ref(ticket)}',
            f"<p>Hello {escape(assignee.get('name') or ticket.assigned_to_name)},</p>"
            f'<p>You have been assigned ticket <strong>{escape(self._ref(ticket))}</strong>.</p>'
            + self._footer(ticket))]
        if creator:
            results.append(self.send(
                [creator],
                f'{self.app_name} Ticket Assigned: {self._ref(ticket)} to {ticket.assigned_to_name}',
                f'<p>Your ticket <strong>{escape(self._ref(ticket))}</strong> has been assigned to '
                f'<strong>{escape(ticket.assigned_to_name)}</strong>.</p>' + self._footer(ticket)))
        return results

    def resolved(self, ticket, recipient):
        solution = ticket.solution
        files = ''.join(f'<li><a href="{escape(a.url)}">{escape(a.name)}</a></li>' for a in solution.attachments)
        body = (f"<p>Dear {escape(recipient.get('name') or ticket.created_by_name or 'User')},</p>"
                f'<p>Your ticket <strong>{escape(self._ref(ticket))}</strong> has been resolved by '
                f'{escape(solution.resolved_by_name)}.</p>'
                f'<div style="padding: 10px; border-left: 3px solid #eee;">{_paragraphs(solution.text)}</div>'
                + (f'<ul>{files}</ul>' if files else '')
                + self._footer(ticket))
        return [self.send([recipient], f"Update: Your {self.app_name} Ticket '{self._ref(ticket)}' Has Been Resolved",
                          body)]
