from models import ROLE_ADMIN, ROLE_USER, ROLE_WORKER, STATUS_CLOSED


def can_view(role, uid, ticket):
    if ticket is None:
        return False
    if role == ROLE_ADMIN:
        return True
    if role == ROLE_WORKER:
        return ticket.assigned_to is not None and ticket.assigned_to == uid
    if role == ROLE_USER:
        return ticket.created_by == uid
    return False


def can_manage(role, uid, ticket):
    """Status changes and resolution."""
    if ticket is None:
        return False
    if role == ROLE_ADMIN:
        return True
    if role == ROLE_WORKER:
        return (ticket.assigned_to is not None and ticket.assigned_to == uid
                and ticket.status != STATUS_CLOSED)
    return False


def can_assign(role):
    return role == ROLE_ADMIN


def can_create(role):
    return role in (ROLE_USER, ROLE_ADMIN)


def can_delete(role):
    return role == ROLE_ADMIN


def can_change_own_role(acting_uid, target_uid):
    # nobody edits their own role, admins included
    return acting_uid != target_uid


def can_change_role(role, acting_uid, target_uid):
    return role == ROLE_ADMIN and can_change_own_role(acting_uid, target_uid)


def is_creator(uid, ticket):
    return ticket is not None and ticket.created_by == uid
