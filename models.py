import uuid
from datetime import datetime
from flask_login import UserMixin
from sqlalchemy import Integer, String, Text, DateTime, Column, ForeignKey
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()

ROLE_USER = 'user'
ROLE_WORKER = 'worker'
ROLE_ADMIN = 'admin'
ROLES = (ROLE_USER, ROLE_WORKER, ROLE_ADMIN)

STATUS_OPEN = 'Open'
STATUS_IN_PROGRESS = 'In Progress'
STATUS_RESOLVED = 'Resolved'
STATUS_CLOSED = 'Closed'
STATUSES = (STATUS_OPEN, STATUS_IN_PROGRESS, STATUS_RESOLVED, STATUS_CLOSED)

PRIORITIES = ('Low', 'Medium', 'High')
CATEGORIES = ('Bug Report', 'Feature Request', 'General Inquiry', 'Billing', 'Other')


def new_id():
    return uuid.uuid4().hex


def _iso(value):
    return value.isoformat() if value else None


def name_snapshot(profile):
    """Display name copied onto tickets and messages at write time."""
    return profile.display_name or profile.email or 'Unknown User'


class Credential(Base):
    __tablename__ = 'credentials'
    uid = Column(String(64), primary_key=True, default=new_id)
    email = Column(String(120), unique=True, index=True, nullable=False)
    display_name = Column(String(120))
    photo_url = Column(String(255))
    password_hash = Column(String(255), nullable=False)


class UserProfile(Base, UserMixin):
    __tablename__ = 'profiles'
    uid = Column(String(64), primary_key=True)
    email = Column(String(120), index=True)
    display_name = Column(String(120))
    photo_url = Column(String(255))
    role = Column(String(20), default=ROLE_USER, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    def get_id(self):
        return self.uid

    def to_dict(self):
        return {
            'uid': self.uid,
            'email': self.email,
            'display_name': self.display_name,
            'photo_url': self.photo_url,
            'role': self.role,
            'created_at': _iso(self.created_at),
        }


class Attachment(Base):
    __tablename__ = 'attachments'
    id = Column(String(32), primary_key=True, default=new_id)
    ticket_id = Column(String(32), ForeignKey('tickets.id'), nullable=True, index=True)
    solution_id = Column(Integer, ForeignKey('solutions.id'), nullable=True, index=True)
    position = Column(Integer, default=0)
    name = Column(String(255), nullable=False)
    url = Column(String(1024), nullable=False)
    type = Column(String(120), default='application/octet-stream')
    size = Column(Integer, default=0)
    file_key = Column(String(512), nullable=False)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'url': self.url,
            'type': self.type,
            'size': self.size,
            'file_key': self.file_key,
        }


class TicketMessage(Base):
    __tablename__ = 'ticket_messages'
    id = Column(String(32), primary_key=True, default=new_id)
    ticket_id = Column(String(32), ForeignKey('tickets.id'), nullable=False, index=True)
    position = Column(Integer, default=0)
    sender_id = Column(String(64), nullable=False)
    sender_display_name = Column(String(120))
    sender_role = Column(String(20))
    message = Column(Text, nullable=False)
    timestamp = Column(DateTime, default=datetime.utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'sender_id': self.sender_id,
            'sender_display_name': self.sender_display_name,
            'sender_role': self.sender_role,
            'message': self.message,
            'timestamp': _iso(self.timestamp),
        }


class Solution(Base):
    __tablename__ = 'solutions'
    id = Column(Integer, primary_key=True)
    ticket_id = Column(String(32), ForeignKey('tickets.id'), unique=True, nullable=False)
    text = Column(Text, nullable=False)
    resolved_by_uid = Column(String(64))
    resolved_by_name = Column(String(120))
    resolved_at = Column(DateTime, default=datetime.utcnow)
    attachments = relationship("Attachment", foreign_keys="Attachment.solution_id", order_by="Attachment.position",
                               cascade="all, delete-orphan", lazy="selectin")

    def to_dict(self):
        return {
            'text': self.text,
            'resolved_by_uid': self.resolved_by_uid,
            'resolved_by_name': self.resolved_by_name,
            'resolved_at': _iso(self.resolved_at),
            'attachments': [a.to_dict() for a in self.attachments],
        }


class Ticket(Base):
    __tablename__ = 'tickets'
    id = Column(String(32), primary_key=True, default=new_id)
    title = Column(String(100), nullable=False)
    description = Column(Text, nullable=False)
    status = Column(String(30), default=STATUS_OPEN, index=True)
    priority = Column(String(20), default='Medium', index=True)
    category = Column(String(40), default='Other')
    created_by = Column(String(64), nullable=False, index=True)
    created_by_name = Column(String(120))
    assigned_to = Column(String(64), nullable=True, index=True)
    assigned_to_name = Column(String(120), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, index=True)
    messages = relationship("TicketMessage", order_by="TicketMessage.position",
                            cascade="all, delete-orphan", lazy="selectin")
    attachments = relationship("Attachment", foreign_keys="Attachment.ticket_id", order_by="Attachment.position",
                               cascade="all, delete-orphan", lazy="selectin")
    solution = relationship("Solution", uselist=False, cascade="all, delete-orphan", lazy="selectin")

    def all_attachments(self):
        found = list(self.attachments)
        if self.solution is not None:
            found.extend(self.solution.attachments)
        return found

    def to_dict(self, include_messages=True):
        out = {
            'id': self.id,
            'title': self.title,
            'description': self.description,
            'status': self.status,
            'priority': self.priority,
            'category': self.category,
            'created_by': self.created_by,
            'created_by_name': self.created_by_name,
            'assigned_to': self.assigned_to,
            'assigned_to_name': self.assigned_to_name,
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at),
            'attachments': [a.to_dict() for a in self.attachments],
            'solution': self.solution.to_dict() if self.solution is not None else None,
        }
        if include_messages:
            out['messages'] = [m.to_dict() for m in self.messages]
        return out
