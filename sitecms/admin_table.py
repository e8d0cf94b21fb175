"""Generic admin data table and form.

A ``DataTable`` is described by a list of ``Column`` descriptors (what the
list view shows) and a list of ``FormField`` descriptors (what the add/edit
form posts). Saving and deleting are dispatched to the collection service,
so every admin write goes through the same validation as the JSON API.
"""
import re

from . import schemas
from .errors import ContentError, DocumentNotFound, ValidationFailed, VersionConflict
from .services import COLLECTION_RULES, CollectionService
from .store import get_store
from .utils import parse_int

FIELD_KINDS = {'text', 'textarea', 'html', 'url', 'number', 'checkbox', 'list', 'select', 'datetime'}
LIST_SPLIT_RE = re.compile(r'[,\n]')
MISSING_CHOICE_LABEL = '(deleted)'
CONFLICT_MESSAGE ='This record was changed by someone else. Reload it and apply your edits again.'


def format_cell(value):
    if value is None:
        return ''
    if isinstance(value, bool):
        return 'Yes' if value else 'No'
    if isinstance(value, (list, tuple)):
        return ', '.join(str(part) for part in value)
    return str(value)


class Column:
    def __init__(self, key, title, render=None):
        self.key = key
        self.title = title
        self.render = render

    def cell(self, item):
        value = item.get(self.key)
        if self.render is not None:
            value = self.render(value, item)
        return format_cell(value)


class FormField:
    def __init__(self, name, label, kind='text', required=False, help=None, choices=None):
        if kind not in FIELD_KINDS:
            raise ValueError(f'Unknown form field kind: {kind}')
        self.name = name
        self.label = label
        self.kind = kind
        self.required = required
        self.help = help
        self.choices = choices

    def options(self, current=None):
        if self.choices is None:
            return []
        options = list(self.choices() if callable(self.choices) else self.choices)
        # Keep a value that no longer has a choice (a deleted category) so saving does not clear it.
        if current and current not in {value for value, _ in options}:
            options.append((current, MISSING_CHOICE_LABEL))
        return options

    def coerce(self, form_data):
        """Convert a posted form value to the type the schema expects.

        Returns None when the field should be left out of the payload.
        """
        if self.kind == 'checkbox':
            return self.name in form_data and form_data.get(self.name) not in ('', '0', 'false', 'off')
        raw = form_data.get(self.name)
        if raw is None:
            return None
        if self.kind == 'list':
            return [part.strip() for part in LIST_SPLIT_RE.split(raw) if part.strip()]
        if self.kind in ('number', 'datetime'):
            raw = raw.strip()
            if not raw:
                return None
            if self.kind == 'number':
                return parse_int(raw, default=raw)
        return raw

    def display_value(self, item):
        if not item:
            return ''
        value = item.get(self.name)
        if value is None:
            return ''
        if self.kind == 'list' and isinstance(value, (list, tuple)):
            return ', '.join(value)
        if self.kind == 'datetime':
            # datetime-local inputs take YYYY-MM-DDTHH:MM
            return str(value)[:16]
        return value


class SaveResult:
    def __init__(self, ok, item=None, errors=None, message=''):
        self.ok = ok
        self.item = item
        self.errors = errors or []
        self.message = message

    def error_for(self, field):
        for error in self.errors:
            if error.field == field:
                return error.message
        return None


class DataTable:
    def __init__(self, title, collection, columns, fields=(), singular=None):
        self.title = title
        self.collection = collection
        self.columns = list(columns)
        self.fields = list(fields)
        self.singular = singular or title.rstrip('s')

    @property
    def editable(self):
        return bool(self.fields) and not COLLECTION_RULES[self.collection].read_only

    def service(self, store=None):
        return CollectionService(store or get_store(), self.collection)

    def rows(self, search=None, records=None):
        if records is None:
            records = self.service().get_all()
        term = (search or '').strip().casefold()
        rows = []
        for item in records:
            cells = [column.cell(item) for column in self.columns]
            if term and not any(term in cell.casefold() for cell in cells):
                continue
            rows.append({'id': item['id'], 'cells': cells, 'item': item})
        return rows

    def coerce(self, form_data, existing=None):
        data = {}
        for field in self.fields:
            if existing is not None and field.kind == 'datetime':
                # The form shows minutes only; an untouched value must not drop the stored seconds.
                if (form_data.get(field.name) or '').strip() == field.display_value(existing):
                    continue
            value = field.coerce(form_data)
            if value is not None:
                data[field.name] = value
        return data

    def dispatch_save(self, form_data, item_id=None):
        service = self.service()
        try:
            if item_id is None:
                item = service.add(self.coerce(form_data))
                message = f'{self.singular} added.'
            else:
                data = self.coerce(form_data, existing=service.get_one(item_id))
                version = parse_int(form_data.get('version'), default=None)
                item = service.update(item_id, data, expected_version=version)
                message = f'{self.singular} updated.'
        except ValidationFailed as exc:
            return SaveResult(False, errors=exc.errors, message='Please correct the highlighted fields.')
        except VersionConflict:
            return SaveResult(False, message=CONFLICT_MESSAGE)
        except (ContentError, DocumentNotFound) as exc:
            return SaveResult(False, message=exc.message)
        return SaveResult(True, item=item, message=message)

    def dispatch_delete(self, item_id):
        try:
            self.service().remove(item_id)
        except DocumentNotFound as exc:
            return SaveResult(False, message=exc.message)
        return SaveResult(True, message=f'{self.singular} deleted.')


def _category_choices():
    categories = CollectionService(get_store(), schemas.CATEGORIES).get_all()
    return [('', '(none)')] + [(item['id'], item['name']) for item in categories]


def _excerpt(value, item, length=80):
    text = value or ''
    return text if len(text) <= length else text[:length - 1].rstrip() + '…'


ADMIN_TABLES = {
    schemas.CATEGORIES: DataTable(
        'Categories',
        schemas.CATEGORIES,
        columns=[Column('name', 'Name'), Column('slug', 'Slug'), Column('description', 'Description', _excerpt)],
        fields=[
            FormField('name', 'Name', required=True),
            FormField('slug', 'Slug', help='Leave blank to generate from the name.'),
            FormField('description', 'Description', 'textarea'),
        ],
        singular='Category',
    ),
    schemas.BLOG_POSTS: DataTable(
        'Blog Posts',
        schemas.BLOG_POSTS,
        columns=[
            Column('title', 'Title'),
            Column('slug', 'Slug'),
            Column('authorName', 'Author'),
            Column('published', 'Published'),
            Column('publishedAt', 'Date', lambda value, item: (value or '')[:10]),
        ],
        fields=[
            FormField('title', 'Title', required=True),
            FormField('slug', 'Slug', help='Leave blank to generate from the title.'),
            FormField('excerpt', 'Excerpt', 'textarea', required=True),
            FormField('content', 'Content', 'html', required=True),
            FormField('authorName', 'Author name', required=True),
            FormField('authorImage', 'Author image URL', 'url'),
            FormField('coverImage', 'Cover image URL', 'url'),
            FormField('categoryId', 'Category', 'select', choices=_category_choices),
            FormField('publishedAt', 'Publish date', 'datetime'),
            FormField('published', 'Published', 'checkbox'),
        ],
        singular='Blog post',
    ),
    schemas.PROJECTS: DataTable(
        'Projects',
        schemas.PROJECTS,
        columns=[
            Column('title', 'Title'),
            Column('category', 'Category'),
            Column('technologies', 'Technologies'),
            Column('featured', 'Featured'),
            Column('order', 'Order'),
        ],
        fields=[
            FormField('title', 'Title', required=True),
            FormField('description', 'Description', 'textarea', required=True),
            FormField('fullDescription', 'Full description', 'textarea'),
            FormField('category', 'Category', required=True),
            FormField('technologies', 'Technologies', 'list', required=True, help='Comma separated.'),
            FormField('image', 'Image URL', 'url'),
            FormField('images', 'Gallery image URLs', 'list', help='One per line or comma separated.'),
            FormField('link', 'Live link', 'url'),
            FormField('githubLink', 'GitHub link', 'url'),
            FormField('clientName', 'Client name'),
            FormField('completionDate', 'Completion date'),
            FormField('testimonial', 'Client testimonial', 'textarea'),
            FormField('challengeDescription', 'Challenge', 'textarea'),
            FormField('solutionDescription', 'Solution', 'textarea'),
            FormField('resultsDescription', 'Results', 'textarea'),
            FormField('order', 'Sort order', 'number'),
            FormField('featured', 'Featured', 'checkbox'),
        ],
        singular='Project',
    ),
    schemas.SERVICES: DataTable(
        'Services',
        schemas.SERVICES,
        columns=[Column('title', 'Title'), Column('slug', 'Slug'), Column('icon', 'Icon')],
        fields=[
            FormField('title', 'Title', required=True),
            FormField('slug', 'Slug', help='Leave blank to generate from the title.'),
            FormField('description', 'Description', 'textarea', required=True),
            FormField('icon', 'Icon', required=True, help='Icon name, for example "code" or "globe".'),
        ],
        singular='Service',
    ),
    schemas.TEAM_MEMBERS: DataTable(
        'Team Members',
        schemas.TEAM_MEMBERS,
        columns=[Column('name', 'Name'), Column('position', 'Position')],
        fields=[
            FormField('name', 'Name', required=True),
            FormField('position', 'Position', required=True),
            FormField('bio', 'Bio', 'textarea', required=True),
            FormField('image', 'Photo URL', 'url'),
            FormField('linkedIn', 'LinkedIn URL', 'url'),
            FormField('twitter', 'Twitter URL', 'url'),
        ],
        singular='Team member',
    ),
    schemas.TESTIMONIALS: DataTable(
        'Testimonials',
        schemas.TESTIMONIALS,
        columns=[
            Column('name', 'Name'),
            Column('company', 'Company'),
            Column('content', 'Testimonial', _excerpt),
        ],
        fields=[
            FormField('name', 'Name', required=True),
            FormField('position', 'Position', required=True),
            FormField('company', 'Company', required=True),
            FormField('content', 'Testimonial', 'textarea', required=True),
            FormField('image', 'Photo URL', 'url'),
        ],
        singular='Testimonial',
    ),
    schemas.CONTACT_MESSAGES: DataTable(
        'Contact Messages',
        schemas.CONTACT_MESSAGES,
        columns=[
            Column('name', 'Name'),
            Column('email', 'Email'),
            Column('subject', 'Subject'),
            Column('message', 'Message', _excerpt),
            Column('createdAt', 'Received', lambda value, item: (value or '')[:16].replace('T', ' ')),
        ],
        singular='Message',
    ),
    schemas.SUBSCRIBERS: DataTable(
        'Subscribers',
        schemas.SUBSCRIBERS,
        columns=[
            Column('email', 'Email'),
            Column('createdAt', 'Subscribed', lambda value, item: (value or '')[:10]),
        ],
        singular='Subscriber',
    ),
}


def get_table(collection):
    try:
        return ADMIN_TABLES[collection]
    except KeyError:
        raise LookupError(f'No admin table for {collection}') from None
