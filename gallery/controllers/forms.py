"""Provides forms for sign-in, registration and organizations."""

from wtforms import Form, PasswordField, StringField
from wtforms.validators import DataRequired, Email, Length, Optional, \
    Regexp

USERNAME_PATTERN = r'^[A-Za-z0-9][A-Za-z0-9_.-]*$'


class LoginForm(Form):
    """Sign in form."""

    username_or_email = StringField('Username or email',
                                    validators=[DataRequired()])
    password = PasswordField('Password', validators=[DataRequired()])


class RegistrationForm(Form):
    """User registration form."""

    email_address = StringField(
        'Email',
        validators=[DataRequired(), Email(), Length(max=255)],
        description='You must be able to receive mail at this address.'
    )
    username = StringField(
        'Username',
        validators=[DataRequired(), Length(max=64),
                    Regexp(USERNAME_PATTERN,
                           message='Usernames may only contain letters,'
                                   ' numbers, dots, dashes and'
                                   ' underscores.')]
    )
    password = PasswordField('Password',
                             validators=[DataRequired(), Length(min=8)])


class ExternalRegistrationForm(RegistrationForm):
    """Registration with an external account; no password is needed."""

    password = PasswordField('Password', validators=[Optional()])


class AddOrganizationForm(Form):
    """Create an organization."""

    organization_name = StringField(
        'Organization name',
        validators=[DataRequired(), Length(max=64),
                    Regexp(USERNAME_PATTERN)]
    )
    organization_email_address = StringField(
        'Organization email',
        validators=[DataRequired(), Email(), Length(max=255)]
    )
