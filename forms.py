"""
WTForms forms validating the scalar fields of engine payloads.

Payloads are partial: only keys present in the incoming dict are validated
and applied, so errors are reported for those keys alone.
"""

from typing import Mapping, Type

from werkzeug.datastructures import MultiDict
from wtforms import BooleanField, DateField, Form, IntegerField, SelectField, StringField, TextAreaField
from wtforms.validators import DataRequired, Length, NumberRange, Optional, Regexp, URL

from config import get_config
from errors import InvalidArgument
from models import CollectionType, DisplayMode, FilmFormat, TextFormat

config = get_config()

SLUG_PATTERN = r"^[a-z0-9]+(?:-[a-z0-9]+)*$"


def _enum_choices(enum_cls):
    return [(member.name, member.value) for member in enum_cls]


class CollectionFieldsForm(Form):
    """Scalar fields of a collection create or update."""

    type = SelectField("Type", choices=_enum_choices(CollectionType))
    title = StringField(
        "Title",
        validators=[
            DataRequired(message="Title cannot be blank."),
            Length(
                min=config.TITLE_MIN_LENGTH,
                max=config.TITLE_MAX_LENGTH,
                message=f"Title must be between {config.TITLE_MIN_LENGTH} and {config.TITLE_MAX_LENGTH} characters.",
            ),
        ],
    )
    slug = StringField(
        "Slug",
        validators=[
            DataRequired(message="Slug cannot be blank."),
            Length(
                min=config.SLUG_MIN_LENGTH,
                max=config.SLUG_MAX_LENGTH,
                message=f"Slug must be between {config.SLUG_MIN_LENGTH} and {config.SLUG_MAX_LENGTH} characters.",
            ),
            Regexp(SLUG_PATTERN, message="Slug may only contain lowercase letters, digits and dashes."),
        ],
    )
    description = TextAreaField(
        "Description",
        validators=[
            Optional(),
            Length(
                max=config.DESCRIPTION_MAX_LENGTH,
                message=f"Description cannot exceed {config.DESCRIPTION_MAX_LENGTH} characters.",
            ),
        ],
    )
    collection_date = DateField("Collection Date", format="%Y-%m-%d")
    visible = BooleanField("Visible")
    display_mode = SelectField("Display Mode", choices=_enum_choices(DisplayMode))
    password = StringField(
        "Password",
        validators=[
            Length(
                min=config.PASSWORD_MIN_LENGTH,
                max=config.PASSWORD_MAX_LENGTH,
                message=f"Password must be between {config.PASSWORD_MIN_LENGTH} and "
                        f"{config.PASSWORD_MAX_LENGTH} characters.",
            ),
        ],
    )
    content_per_page = IntegerField(
        "Content Per Page", validators=[NumberRange(min=1, message="Content per page must be 1 or greater.")]
    )
    rows_wide = IntegerField("Rows Wide", validators=[NumberRange(min=1, message="Rows wide must be 1 or greater.")])
    cover_image_id = IntegerField(
        "Cover Image", validators=[NumberRange(min=0, message="Cover image id cannot be negative.")]
    )


class ImageFieldsForm(Form):
    """Scalar metadata of an image."""

    title = StringField("Title", validators=[Optional(), Length(max=255)])
    description = TextAreaField("Description", validators=[Optional()])
    author = StringField("Author", validators=[Optional(), Length(max=255)])
    image_url_web = StringField("Web URL", validators=[Optional(), URL(require_tld=False), Length(max=500)])
    width = IntegerField("Width", validators=[NumberRange(min=1)])
    height = IntegerField("Height", validators=[NumberRange(min=1)])
    rating = IntegerField("Rating", validators=[NumberRange(min=1, max=5, message="Rating must be between 1 and 5.")])
    iso = IntegerField("ISO", validators=[NumberRange(min=1, message="ISO must be positive.")])
    f_stop = StringField("F-Stop", validators=[Optional(), Length(max=20)])
    shutter_speed = StringField("Shutter Speed", validators=[Optional(), Length(max=20)])
    focal_length = StringField("Focal Length", validators=[Optional(), Length(max=20)])
    is_film = BooleanField("Film")
    film_format = SelectField("Film Format", choices=_enum_choices(FilmFormat))
    black_and_white = BooleanField("Black and White")
    capture_date = DateField("Capture Date", format="%Y-%m-%d")


class TextContentForm(Form):
    """A new text block."""

    title = StringField("Title", validators=[Optional(), Length(max=255)])
    body = TextAreaField("Body", validators=[DataRequired(message="Please enter some content.")])
    format = SelectField("Format", choices=[(member.value, member.name) for member in TextFormat])


class GifContentForm(Form):
    """A new gif."""

    title = StringField("Title", validators=[Optional(), Length(max=255)])
    gif_url = StringField(
        "Gif URL",
        validators=[DataRequired(message="Gif URL is required."), URL(require_tld=False), Length(max=500)],
    )
    thumbnail_url = StringField("Thumbnail URL", validators=[Optional(), URL(require_tld=False), Length(max=500)])
    width = IntegerField("Width", validators=[NumberRange(min=1)])
    height = IntegerField("Height", validators=[NumberRange(min=1)])


def _form_value(value) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return str(value)


def validate_fields(form_class: Type[Form], data: Mapping, required=()) -> dict:
    """
    Validate the keys of ``data`` that ``form_class`` declares.

    Args:
        form_class: WTForms form describing the fields
        data: partial payload; keys with ``None`` values are skipped
        required: field names that must be present

    Returns:
        Dict of coerced values for the keys present in ``data``

    Raises:
        InvalidArgument: listing the failing fields
    """
    declared = [field.name for field in form_class()]
    present_names = [name for name in declared if data.get(name) is not None]
    missing = [name for name in required if name not in present_names]
    if missing:
        raise InvalidArgument(f"Missing required fields: {', '.join(missing)}", {'missing': missing})

    formdata = MultiDict([(name, _form_value(data[name])) for name in present_names])
    form = form_class(formdata=formdata)
    form.validate()

    errors = {name: messages for name, messages in form.errors.items() if name in present_names}
    if errors:
        first = next(iter(errors.values()))[0]
        raise InvalidArgument(first, {'fields': errors})

    return {name: form[name].data for name in present_names}
