from flask_wtf import FlaskForm
from wtforms import BooleanField, StringField
from wtforms.validators import InputRequired, Length


class JSONForm(FlaskForm):
    """Base form for JSON request bodies; the API does not use CSRF tokens."""

    class Meta:
        csrf = False


class PlayerNameForm(JSONForm):
    player_name = StringField("Player name", validators=[InputRequired(), Length(min=1, max=40)])


class ChoiceForm(JSONForm):
    choice_id = StringField("Choice", validators=[InputRequired(), Length(max=120)])


class FlagForm(JSONForm):
    value = BooleanField("Value", default=True)


class ImageForm(JSONForm):
    prompt = StringField("Image prompt", validators=[InputRequired(), Length(max=500)])
