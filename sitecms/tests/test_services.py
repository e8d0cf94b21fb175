import logging

import pytest

from sitecms.errors import (
    DocumentNotFound,
    DocumentValidationError,
    DuplicateRecord,
    ReadOnlyCollection,
    ReferenceNotFound,
    ValidationFailed,
    VersionConflict,
)
from sitecms.schemas import (
    BLOG_POSTS,
    CATEGORIES,
    CONTACT_MESSAGES,
    PROJECTS,
    SERVICES,
    SUBSCRIBERS,
    TESTIMONIALS,
)
from sitecms.services import (
    STATE_ERROR,
    STATE_IDLE,
    STATE_SUCCESS,
    CollectionService,
    blog_post_with_category,
    blog_posts_with_categories,
    services_for,
)

from conftest import blog_post_payload, category_payload, project_payload, sample_testimonial, service_payload

META = {"id", "version", "createdAt", "updatedAt"}


@pytest.fixture()
def service(store):
    def make(collection):
        return CollectionService(store, collection)
    return make


def without_meta(record):
    return {key: value for key, value in record.items() if key not in META}


def test_add_then_get_one_round_trips(service):
    testimonials = service(TESTIMONIALS)
    payload = sample_testimonial()
    created = testimonials.add(payload)

    fetched = testimonials.get_one(created["id"])
    assert fetched == created
    assert without_meta(fetched) == dict(payload, image=None)
    assert fetched["version"] == 1


def test_operation_state_tracks_last_call(service):
    testimonials = service(TESTIMONIALS)
    assert testimonials.state.status == STATE_IDLE

    created = testimonials.add(sample_testimonial())
    assert testimonials.state.status == STATE_SUCCESS
    assert testimonials.state.operation == "add"
    assert testimonials.state.data == created
    assert testimonials.state.loading is False

    with pytest.raises(ValidationFailed):
        testimonials.add({"name": "x"})
    assert testimonials.state.status == STATE_ERROR
    assert isinstance(testimonials.state.error, ValidationFailed)


def test_empty_category_slug_is_generated_from_name(service):
    created = service(CATEGORIES).add({"name": "Web Design", "slug": ""})
    assert created["slug"] == "web-design"


@pytest.mark.parametrize(
    "collection, make_payload",
    [
        (CATEGORIES, category_payload),
        (BLOG_POSTS, blog_post_payload),
        (SERVICES, service_payload),
    ],
)
def test_duplicate_slug_is_rejected(service, collection, make_payload):
    items = service(collection)
    first = items.add(make_payload(slug="shared-slug"))
    assert first["slug"] == "shared-slug"

    with pytest.raises(DuplicateRecord) as excinfo:
        items.add(make_payload(slug="Shared-Slug"))
    assert excinfo.value.field == "slug"
    assert len(items.store.find_by(collection, "slug", "shared-slug")) == 1


def test_generated_slug_collision_is_rejected(service):
    services = service(SERVICES)
    services.add(service_payload())
    with pytest.raises(DuplicateRecord):
        services.add(service_payload(description="Another description for the same title."))


def test_update_can_keep_its_own_slug_but_not_take_another(service):
    categories = service(CATEGORIES)
    first = categories.add(category_payload(name="Design", slug="design"))
    second = categories.add(category_payload(name="Hosting", slug="hosting"))

    updated = categories.update(first["id"], {"slug": "design", "description": "Logos and brands"})
    assert updated["description"] == "Logos and brands"

    with pytest.raises(DuplicateRecord):
        categories.update(second["id"], {"slug": "design"})


def test_partial_update_changes_only_supplied_fields(service):
    testimonials = service(TESTIMONIALS)
    created = testimonials.add(sample_testimonial())

    updated = testimonials.update(created["id"], {"company": "Meena Silks"})
    assert updated["company"] == "Meena Silks"
    assert updated["version"] == 2
    for field in ("name", "position", "content", "createdAt"):
        assert updated[field] == created[field]


def test_update_without_changes_does_not_bump_version(service):
    testimonials = service(TESTIMONIALS)
    created = testimonials.add(sample_testimonial())
    unchanged = testimonials.update(created["id"], {"company": created["company"]})
    assert unchanged["version"] == 1


def test_update_is_validated_against_the_full_record(service):
    testimonials = service(TESTIMONIALS)
    created = testimonials.add(sample_testimonial())
    with pytest.raises(ValidationFailed) as excinfo:
        testimonials.update(created["id"], {"content": "short"})
    assert [error.field for error in excinfo.value.errors] == ["content"]
    assert testimonials.get_one(created["id"])["content"] == created["content"]


def test_update_with_stale_version_is_a_conflict(service):
    testimonials = service(TESTIMONIALS)
    created = testimonials.add(sample_testimonial())
    testimonials.update(created["id"], {"company": "First Edit"}, expected_version=1)

    with pytest.raises(VersionConflict):
        testimonials.update(created["id"], {"company": "Second Edit"}, expected_version=1)
    assert testimonials.get_one(created["id"])["company"] == "First Edit"


def test_update_without_version_is_last_write_wins(service):
    testimonials = service(TESTIMONIALS)
    created = testimonials.add(sample_testimonial())
    testimonials.update(created["id"], {"company": "First Edit"})
    latest = testimonials.update(created["id"], {"company": "Second Edit"})
    assert latest["company"] == "Second Edit"
    assert latest["version"] == 3


def test_remove_then_get_one_raises_not_found(service):
    testimonials = service(TESTIMONIALS)
    created = testimonials.add(sample_testimonial())
    assert testimonials.remove(created["id"]) == created["id"]
    with pytest.raises(DocumentNotFound):
        testimonials.get_one(created["id"])


def test_duplicate_subscriber_email_is_rejected(service):
    subscribers = service(SUBSCRIBERS)
    subscribers.add({"email": "owner@example.com"})
    with pytest.raises(DuplicateRecord) as excinfo:
        subscribers.add({"email": "Owner@Example.com"})
    assert excinfo.value.message == "Email already subscribed"
    assert len(subscribers.get_all()) == 1


def test_project_titles_are_unique_case_insensitively(service):
    projects = service(PROJECTS)
    projects.add(project_payload(title="Billing Suite"))
    with pytest.raises(DuplicateRecord) as excinfo:
        projects.add(project_payload(title="billing suite"))
    assert excinfo.value.field == "title"


def test_append_only_collections_reject_updates(service):
    messages = service(CONTACT_MESSAGES)
    created = messages.add({
        "name": "Ravi",
        "email": "ravi@example.com",
        "subject": "Quote",
        "message": "Need a website",
    })
    with pytest.raises(ReadOnlyCollection):
        messages.update(created["id"], {"subject": "Changed"})
    messages.remove(created["id"])
    assert messages.get_all() == []


def test_blog_post_category_must_exist_when_written(service):
    with pytest.raises(ReferenceNotFound):
        service(BLOG_POSTS).add(blog_post_payload(categoryId="does-not-exist"))


def test_deleting_category_leaves_blog_post_reference_dangling(service, store):
    categories = service(CATEGORIES)
    posts = service(BLOG_POSTS)
    category = categories.add(category_payload())
    post = posts.add(blog_post_payload(categoryId=category["id"]))

    expanded = blog_posts_with_categories(store)
    assert expanded[0]["category"]["id"] == category["id"]

    categories.remove(category["id"])
    stored = posts.get_one(post["id"])
    assert stored["categoryId"] == category["id"]

    expanded = blog_post_with_category(post["slug"], store)
    assert expanded["categoryId"] == category["id"]
    assert expanded["category"] is None

    # Editing other fields must not trip over the dangling reference.
    edited = posts.update(post["id"], {"title": "Ten tips for a faster shop website"})
    assert edited["categoryId"] == category["id"]


def test_blog_posts_are_newest_first_and_filterable(service, store):
    posts = service(BLOG_POSTS)
    posts.add(blog_post_payload(title="Older post title", publishedAt="2023-01-01T00:00:00Z"))
    posts.add(blog_post_payload(title="Newer post title", publishedAt="2024-01-01T00:00:00Z"))
    posts.add(blog_post_payload(title="Draft post title", published=False, publishedAt="2025-01-01T00:00:00Z"))

    assert [post["title"] for post in posts.get_all()] == [
        "Draft post title",
        "Newer post title",
        "Older post title",
    ]
    published = blog_posts_with_categories(store, published_only=True)
    assert [post["title"] for post in published] == ["Newer post title", "Older post title"]


def test_projects_are_ordered_by_order_field(service):
    projects = service(PROJECTS)
    projects.add(project_payload(title="Third", order=3))
    projects.add(project_payload(title="First", order=1))
    projects.add(project_payload(title="Second", order=2))
    assert [item["title"] for item in projects.get_all()] == ["First", "Second", "Third"]


def test_get_by_slug(service):
    services = service(SERVICES)
    created = services.add(service_payload())
    assert services.get_by_slug("web-development")["id"] == created["id"]
    with pytest.raises(DocumentNotFound):
        services.get_by_slug("nope")


def test_malformed_documents_are_skipped_in_lists_and_raise_on_get(service, store, caplog):
    testimonials = service(TESTIMONIALS)
    good = testimonials.add(sample_testimonial())
    bad_id = store.add(TESTIMONIALS, {"name": "x"})

    with caplog.at_level(logging.WARNING, logger="sitecms.services"):
        records = testimonials.get_all()
    assert [record["id"] for record in records] == [good["id"]]
    assert "Skipping malformed document" in caplog.text

    with pytest.raises(DocumentValidationError):
        testimonials.get_one(bad_id)


def test_services_for_builds_one_service_per_collection(app_ctx):
    registry = services_for(app_ctx)
    assert set(registry) >= {CATEGORIES, BLOG_POSTS, SUBSCRIBERS}
    assert registry[CATEGORIES].collection == CATEGORIES


def test_unknown_collection_is_rejected(store):
    with pytest.raises(LookupError):
        CollectionService(store, "invoices")


def test_blog_post_rejected_when_sanitized_content_is_too_short(service, store):
    posts = service(BLOG_POSTS)
    embed = '<iframe src="https://www.youtube.com/embed/abcdefghijk"></iframe><p>Watch this</p>'
    with pytest.raises(ValidationFailed) as excinfo:
        posts.add(blog_post_payload(content=embed))
    assert [error.field for error in excinfo.value.errors] == ["content"]
    assert store.get_all(BLOG_POSTS) == []
