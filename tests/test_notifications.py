from types import SimpleNamespace
from unittest import mock

import pytest

from app import mail
from notifications import NotificationDispatcher


@pytest.fixture
def ticket():
    return SimpleNamespace(
        id='0123456789abcdef0123456789abcdef',
        title='Printer <b>jam</b>',
        description='Line one\nLine <two>',
        category='Other',
        priority='High',
        status='Closed',
        created_by_name='Uma User',
        assigned_to_name='Wes Worker',
        solution=None,
    )


def test_send_records_message(app, outbox):
    notifier = NotificationDispatcher(app, mail)
    result = notifier.send([{'email': 'uma@example.com', 'name': 'Uma'}], 'Hello', '<p>hi</p>')
    assert result == {'success': True, 'message': 'sent'}
    assert len(outbox) == 1
    assert outbox[0].recipients == [('Uma', 'uma@example.com')]
    assert outbox[0].html == '<p>hi</p>'


def test_send_without_recipients_or_sender(app, outbox):
    notifier = NotificationDispatcher(app, mail)
    assert notifier.send([None, {'email': ''}], 'Hello', 'x')['success'] is False
    app.config['MAIL_DEFAULT_SENDER'] = None
    assert notifier.send(['uma@example.com'], 'Hello', 'x') == {
        'success': False, 'message': 'mail sender not configured'}
    assert outbox == []


def test_send_failure_is_returned_not_raised(app):
    broken = mock.Mock()
    broken.send.side_effect = ConnectionRefusedError('smtp refused')
    result = NotificationDispatcher(app, broken).send(['uma@example.com'], 'Hello', 'x')
    assert result == {'success': False, 'error': 'smtp refused'}


def test_async_send_starts_thread(app):
    app.config['MAIL_ASYNC'] = True
    with mock.patch('notifications.Thread') as thread:
        result = NotificationDispatcher(app, mail).send(['uma@example.com'], 'Hello', 'x')
    assert result == {'success': True, 'message': 'queued for background delivery, failures are only logged'}
    thread.return_value.start.assert_called_once_with()


def test_ticket_created_escapes_user_text(app, outbox, ticket):
    creator = SimpleNamespace(email='uma@example.com', display_name='Uma User')
    app.config['ADMIN_NOTIFICATION_EMAIL'] = 'desk@example.com'
    results = NotificationDispatcher(app, mail).ticket_created(ticket, creator)
    assert [r['success'] for r in results] == [True, True]
    html = outbox[0].html
    assert 'Printer &lt;b&gt;jam&lt;/b&gt;' in html
    assert 'Line one<br>Line &lt;two&gt;' in html
    assert 'http://helpdesk.test/tickets/' + ticket.id in html
    assert outbox[0].subject == 'Helpdesk Ticket Created: Printer <b>jam</b> (#01234567)'
    assert outbox[1].recipients == ['desk@example.com']


def test_status_changed_subjects(app, outbox, ticket):
    notifier = NotificationDispatcher(app, mail)
    notifier.status_changed(ticket, {'email': 'uma@example.com', 'name': 'Uma'})
    ticket.status = 'In Progress'
    notifier.status_changed(ticket, {'email': 'uma@example.com'})
    assert 'Has Been Closed' in outbox[0].subject
    assert outbox[1].subject.endswith('to In Progress')
    assert 'Dear Uma User' in outbox[1].html


def test_assigned_notifies_creator_when_given(app, outbox, ticket):
    notifier = NotificationDispatcher(app, mail)
    notifier.assigned(ticket, {'email': 'wes@example.com', 'name': 'Wes'}, None)
    notifier.assigned(ticket, {'email': 'wes@example.com', 'name': 'Wes'}, {'email': 'uma@example.com'})
    assert [m.recipients for m in outbox] == [[('Wes', 'wes@example.com')], [('Wes', 'wes@example.com')],
                                               ['uma@example.com']]


def test_resolved_lists_solution_files(app, outbox, ticket):
    ticket.solution = SimpleNamespace(
        text='Replaced toner cartridge and cleared paper jam.',
        resolved_by_name='Wes Worker',
        attachments=[SimpleNamespace(url='http://helpdesk.test/files/uploads/x-proof.png', name='proof.png')],
    )
    NotificationDispatcher(app, mail).resolved(ticket, {'email': 'uma@example.com', 'name': 'Uma'})
    html = outbox[0].html
    assert 'Replaced toner cartridge' in html
    assert '<a href="http://helpdesk.test/files/uploads/x-proof.png">proof.png</a>' in html
