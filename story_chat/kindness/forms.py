from wtforms import IntegerField, SelectField, StringField
from wtforms.validators import InputRequired, Length, NumberRange

from ..game.forms import JSONForm
from ..services.kindness import ENTRY_CATEGORIES, ENTRY_TYPES, MAX_VALUE, MIN_VALUE


class KindnessEntryForm(JSONForm):
    type = SelectField(
        "Kindness type",
        choices=[(value, value.title()) for value in ENTRY_TYPES],
        validators=[InputRequired()],
    )
    description = StringField("What happened?", validators=[InputRequired(), Length(max=500)])
    value = IntegerField(
        "How much did it matter?",
        validators=[InputRequired(), NumberRange(min=MIN_VALUE, max=MAX_VALUE)],
    )
    category = SelectField(
        "Category",
        choices=[(value, value.title()) for value in ENTRY_CATEGORIES],
        default="other",
    )
