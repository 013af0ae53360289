import itertools
from types import SimpleNamespace

import pytest

import permissions
from models import ROLES, STATUSES

ME = 'uid-me'
SOMEONE = 'uid-someone'
ALL_ROLES = ROLES + ('guest',)

CASES = list(itertools.product(ALL_ROLES, (ME, SOMEONE), (ME, SOMEONE, None), STATUSES))


def ticket(created_by, assigned_to, status):
    return SimpleNamespace(created_by=created_by, assigned_to=assigned_to, status=status)


@pytest.mark.parametrize('role,creator,assignee,status', CASES)
def test_can_view_rule(role, creator, assignee, status):
    expected = (role == 'admin'
                or (role == 'worker' and assignee == ME)
                or (role == 'user' and creator == ME))
    assert permissions.can_view(role, ME, ticket(creator, assignee, status)) is expected


@pytest.mark.parametrize('role,creator,assignee,status', CASES)
def test_can_manage_rule(role, creator, assignee, status):
    expected = (role == 'admin'
                or (role == 'worker' and assignee == ME and status != 'Closed'))
    assert permissions.can_manage(role, ME, ticket(creator, assignee, status)) is expected


@pytest.mark.parametrize('role,creator,assignee,status', CASES)
def test_manage_implies_view(role, creator, assignee, status):
    t = ticket(creator, assignee, status)
    if permissions.can_manage(role, ME, t):
        assert permissions.can_view(role, ME, t)


def test_unassigned_ticket_is_invisible_to_worker_with_no_uid():
    assert not permissions.can_view('worker', None, ticket(SOMEONE, None, 'Open'))


def test_missing_ticket_is_never_visible():
    for role in ALL_ROLES:
        assert not permissions.can_view(role, ME, None)
        assert not permissions.can_manage(role, ME, None)


@pytest.mark.parametrize('role', ALL_ROLES)
def test_create_delete_assign(role):
    assert permissions.can_create(role) is (role in ('user', 'admin'))
    assert permissions.can_delete(role) is (role == 'admin')
    assert permissions.can_assign(role) is (role == 'admin')


@pytest.mark.parametrize('uid', ['a', 'admin-1', 'x' * 64, ''])
def test_nobody_changes_their_own_role(uid):
    assert permissions.can_change_own_role(uid, uid) is False
    for role in ALL_ROLES:
        assert permissions.can_change_role(role, uid, uid) is False


@pytest.mark.parametrize('role', ALL_ROLES)
def test_only_admin_changes_other_roles(role):
    assert permissions.can_change_role(role, ME, SOMEONE) is (role == 'admin')
