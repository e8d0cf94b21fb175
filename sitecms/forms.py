"""Flask-WTF form for the admin sign-in page."""
from flask_wtf import FlaskForm
from wtforms import BooleanField, PasswordField, StringField
from wtforms.validators import DataRequired, Length


class LoginForm(FlaskForm):
    class Meta:
        # Session CSRF is already enforced for the admin blueprint in create_app.
        csrf = False

    username = StringField('Username', validators=[DataRequired(), Length(max=80)])
    password = PasswordField('Password', validators=[DataRequired(), Length(max=200)])
    remember_me = BooleanField('Remember me')
