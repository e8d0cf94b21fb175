"""
Content schemas

One pydantic model per collection. The same models validate writes coming
from the admin API/forms and documents read back from the store, so a
record that reaches a template or a JSON response always has the expected
shape. Field names are snake_case in Python and camelCase on the wire.
"""
from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from .errors import DocumentValidationError
from .utils import SLUG_RE, is_valid_url, sanitize_html, utc_now

SLUG_PATTERN = SLUG_RE.pattern
META_FIELDS = ('id', 'version', 'createdAt', 'updatedAt')

USERS = 'users'
CATEGORIES = 'categories'
BLOG_POSTS = 'blog-posts'
PROJECTS = 'projects'
SERVICES = 'services'
TEAM_MEMBERS = 'team-members'
TESTIMONIALS = 'testimonials'
CONTACT_MESSAGES = 'contact-messages'
SUBSCRIBERS = 'subscribers'


class FieldError:
    __slots__ = ('field', 'message')

    def __init__(self, field, message):
        self.field = field
        self.message = message

    def as_dict(self):
        return {'field': self.field, 'message': self.message}

    def __eq__(self, other):
        return isinstance(other, FieldError) and (self.field, self.message) == (other.field, other.message)

    def __repr__(self):
        return f'FieldError({self.field!r}, {self.message!r})'


class ContentModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
        extra='ignore',
    )


def _optional_url(value):
    if value in (None, ''):
        return None
    if not is_valid_url(value):
        raise ValueError('Must be a valid URL')
    return value


def _blank_to_none(value):
    if isinstance(value, str) and not value.strip():
        return None
    return value


class User(ContentModel):
    username: str = Field(min_length=3, max_length=80)
    password_hash: str = Field(min_length=1)
    name: Optional[str] = Field(default=None, max_length=200)


class Category(ContentModel):
    name: str = Field(min_length=2, max_length=100)
    slug: str = Field(min_length=2, max_length=100, pattern=SLUG_PATTERN)
    description: Optional[str] = Field(default=None, max_length=1000)

    @field_validator('slug', mode='before')
    @classmethod
    def lower_slug(cls, value):
        return value.strip().lower() if isinstance(value, str) else value


class BlogPost(ContentModel):
    title: str = Field(min_length=3, max_length=300)
    slug: str = Field(min_length=3, max_length=300, pattern=SLUG_PATTERN)
    excerpt: str = Field(min_length=10, max_length=2000)
    content: str = Field(min_length=50)
    published: bool = True
    author_name: str = Field(min_length=2, max_length=200)
    author_image: Optional[str] = None
    cover_image: Optional[str] = None
    published_at: Optional[datetime] = Field(default=None, validate_default=True)
    category_id: Optional[str] = None

    @field_validator('slug', mode='before')
    @classmethod
    def lower_slug(cls, value):
        return value.strip().lower() if isinstance(value, str) else value

    @field_validator('content', mode='before')
    @classmethod
    def clean_content(cls, value):
        # Sanitise first so min_length applies to the HTML that gets stored.
        return sanitize_html(value) if isinstance(value, str) else value

    @field_validator('category_id', mode='before')
    @classmethod
    def coerce_category_id(cls, value):
        value = _blank_to_none(value)
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator('author_image', 'cover_image', mode='before')
    @classmethod
    def blank_images(cls, value):
        return _blank_to_none(value)

    @field_validator('published_at')
    @classmethod
    def default_published_at(cls, value):
        if value is None:
            return utc_now()
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class Project(ContentModel):
    title: str = Field(min_length=3, max_length=300)
    description: str = Field(min_length=10)
    full_description: Optional[str] = None
    image: Optional[str] = None
    images: List[str] = Field(default_factory=list)
    category: str = Field(min_length=2, max_length=100)
    technologies: List[str] = Field(min_length=1)
    link: Optional[str] = None
    github_link: Optional[str] = None
    client_name: Optional[str] = None
    completion_date: Optional[str] = None
    featured: bool = False
    testimonial: Optional[str] = None
    challenge_description: Optional[str] = None
    solution_description: Optional[str] = None
    results_description: Optional[str] = None
    order: int = 0

    @field_validator(
        'full_description', 'image', 'client_name', 'completion_date', 'testimonial',
        'challenge_description', 'solution_description', 'results_description',
        mode='before',
    )
    @classmethod
    def blank_text(cls, value):
        return _blank_to_none(value)

    @field_validator('link', 'github_link', mode='before')
    @classmethod
    def check_links(cls, value):
        return _optional_url(_blank_to_none(value))

    @field_validator('technologies', 'images', mode='before')
    @classmethod
    def drop_blank_items(cls, value):
        if isinstance(value, list):
            return [item.strip() for item in value if isinstance(item, str) and item.strip()]
        return value

    @field_validator('order', mode='before')
    @classmethod
    def default_order(cls, value):
        return 0 if value in (None, '') else value


class Service(ContentModel):
    title: str = Field(min_length=3, max_length=200)
    slug: str = Field(min_length=3, max_length=200, pattern=SLUG_PATTERN)
    description: str = Field(min_length=10)
    icon: str = Field(min_length=1, max_length=100)

    @field_validator('slug', mode='before')
    @classmethod
    def lower_slug(cls, value):
        return value.strip().lower() if isinstance(value, str) else value


class TeamMember(ContentModel):
    name: str = Field(min_length=2, max_length=200)
    position: str = Field(min_length=2, max_length=200)
    bio: str = Field(min_length=10, max_length=4000)
    image: Optional[str] = None
    linked_in: Optional[str] = None
    twitter: Optional[str] = None

    @field_validator('image', mode='before')
    @classmethod
    def blank_image(cls, value):
        return _blank_to_none(value)

    @field_validator('linked_in', 'twitter', mode='before')
    @classmethod
    def check_links(cls, value):
        return _optional_url(_blank_to_none(value))


class Testimonial(ContentModel):
    name: str = Field(min_length=2, max_length=200)
    position: str = Field(min_length=2, max_length=200)
    company: str = Field(min_length=2, max_length=200)
    content: str = Field(min_length=10, max_length=4000)
    image: Optional[str] = None

    @field_validator('image', mode='before')
    @classmethod
    def blank_image(cls, value):
        return _blank_to_none(value)


class ContactMessage(ContentModel):
    name: str = Field(min_length=1, max_length=200)
    email: EmailStr
    phone: Optional[str] = Field(default=None, max_length=80)
    subject: str = Field(min_length=1, max_length=300)
    message: str = Field(min_length=1, max_length=5000)

    @field_validator('phone', mode='before')
    @classmethod
    def blank_phone(cls, value):
        return _blank_to_none(value)


class Subscriber(ContentModel):
    email: EmailStr

    @field_validator('email', mode='before')
    @classmethod
    def lower_email(cls, value):
        return value.strip().lower() if isinstance(value, str) else value


COLLECTION_MODELS = {
    USERS: User,
    CATEGORIES: Category,
    BLOG_POSTS: BlogPost,
    PROJECTS: Project,
    SERVICES: Service,
    TEAM_MEMBERS: TeamMember,
    TESTIMONIALS: Testimonial,
    CONTACT_MESSAGES: ContactMessage,
    SUBSCRIBERS: Subscriber,
}


def model_for(collection):
    try:
        return COLLECTION_MODELS[collection]
    except KeyError:
        raise LookupError(f'Unknown collection: {collection}') from None


def _field_errors(exc):
    errors = []
    for item in exc.errors():
        field = '.'.join(str(part) for part in item.get('loc', ())) or '__root__'
        message = item.get('msg', 'Invalid value')
        if message.startswith('Value error, '):
            message = message[len('Value error, '):]
        errors.append(FieldError(field, message))
    return errors


def validate_record(collection, payload, base=None):
    """Validate a candidate record for ``collection``.

    Returns ``(record, errors)``. On success ``record`` is the normalized
    camelCase dict and ``errors`` is empty; on failure ``record`` is None.
    When ``base`` is given the payload is merged over it first, which is how
    partial updates are checked against the full set of rules.
    """
    model = model_for(collection)
    if not isinstance(payload, dict):
        return None, [FieldError('__root__', 'Expected an object')]
    candidate = {}
    if base:
        candidate.update({k: v for k, v in base.items() if k not in META_FIELDS})
    candidate.update({k: v for k, v in payload.items() if k not in META_FIELDS})
    try:
        instance = model.model_validate(candidate)
    except ValidationError as exc:
        return None, _field_errors(exc)
    return instance.model_dump(by_alias=True, mode='json'), []


def load_document(collection, document):
    """Read-boundary check: re-validate a stored document and keep its metadata."""
    model = model_for(collection)
    data = {k: v for k, v in document.items() if k not in META_FIELDS}
    try:
        instance = model.model_validate(data)
    except ValidationError as exc:
        raise DocumentValidationError(collection, document.get('id'), _field_errors(exc)) from exc
    record = instance.model_dump(by_alias=True, mode='json')
    for key in META_FIELDS:
        if key in document:
            record[key] = document[key]
    return record


def public_user(record):
    if not record:
        return None
    return {k: v for k, v in record.items() if k != 'passwordHash'}
