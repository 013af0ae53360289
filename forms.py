from flask_wtf import FlaskForm
from wtforms import StringField, PasswordField, SelectField, TextAreaField
from wtforms.validators import DataRequired, Email, Length, Optional, URL

from lifecycle import (DESCRIPTION_MAX, DESCRIPTION_MIN, MESSAGE_MAX, MESSAGE_MIN, SOLUTION_MAX,
                       SOLUTION_MIN, TITLE_MAX, TITLE_MIN)
from models import CATEGORIES, PRIORITIES, ROLES, STATUSES


def _choices(values):
    return [(v, v) for v in values]


class RegisterForm(FlaskForm):
    name = StringField('Full name', validators=[DataRequired(), Length(max=120)])
    email = StringField('Email', validators=[DataRequired(), Email(), Length(max=120)])
    password = PasswordField('Password', validators=[DataRequired(), Length(min=6)])
    photo_url = StringField('Photo URL', validators=[Optional(), URL(), Length(max=255)])

class LoginForm(FlaskForm):
    email = StringField('Email', validators=[DataRequired(), Email()])
    password = PasswordField('Password', validators=[DataRequired()])

class TicketForm(FlaskForm):
    title = StringField('Title', validators=[DataRequired(), Length(min=TITLE_MIN, max=TITLE_MAX)])
    description = TextAreaField('Description', validators=[DataRequired(), Length(min=DESCRIPTION_MIN, max=DESCRIPTION_MAX)])
    priority = SelectField('Priority', choices=_choices(PRIORITIES), default='Medium')
    category = SelectField('Category', choices=_choices(CATEGORIES), validators=[DataRequired()])

class MessageForm(FlaskForm):
    message = TextAreaField('Message', validators=[DataRequired(), Length(min=MESSAGE_MIN, max=MESSAGE_MAX)])

class StatusForm(FlaskForm):
    status = SelectField('Status', choices=_choices(STATUSES), validators=[DataRequired()])

class AssignForm(FlaskForm):
    worker_uid = StringField('Worker', validators=[DataRequired(), Length(max=64)])
    worker_name = StringField('Worker name', validators=[Optional(), Length(max=120)])

class ResolveForm(FlaskForm):
    solution_text = TextAreaField('Solution', validators=[DataRequired(), Length(min=SOLUTION_MIN, max=SOLUTION_MAX)])

class RoleForm(FlaskForm):
    role = SelectField('Role', choices=_choices(ROLES), validators=[DataRequired()])

class TranslateForm(FlaskForm):
    text = TextAreaField('Text', validators=[DataRequired(), Length(max=5000)])
    target_language = StringField('Target language', validators=[DataRequired(), Length(max=40)])
    source_language = StringField('Source language', validators=[Optional(), Length(max=40)])
