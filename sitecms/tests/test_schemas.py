import pytest

from sitecms.errors import DocumentValidationError
from sitecms.schemas import (
    BLOG_POSTS,
    CATEGORIES,
    CONTACT_MESSAGES,
    PROJECTS,
    SUBSCRIBERS,
    TEAM_MEMBERS,
    USERS,
    FieldError,
    load_document,
    model_for,
    public_user,
    validate_record,
)

from conftest import blog_post_payload, project_payload


def error_fields(errors):
    return {error.field for error in errors}


def test_valid_category_is_normalized():
    record, errors = validate_record(CATEGORIES, {"name": "  Web Design ", "slug": "Web-Design", "bogus": 1})
    assert errors == []
    assert record == {"name": "Web Design", "slug": "web-design", "description": None}


def test_category_slug_pattern_is_enforced():
    record, errors = validate_record(CATEGORIES, {"name": "Web Design", "slug": "web design!"})
    assert record is None
    assert "slug" in error_fields(errors)


def test_minimum_lengths_are_reported_per_field():
    record, errors = validate_record(CATEGORIES, {"name": "W", "slug": "w"})
    assert record is None
    assert error_fields(errors) == {"name", "slug"}
    assert all(isinstance(error, FieldError) for error in errors)


def test_non_object_payload_is_rejected():
    record, errors = validate_record(CATEGORIES, ["not", "a", "dict"])
    assert record is None
    assert errors == [FieldError("__root__", "Expected an object")]


def test_blog_post_content_is_sanitized_and_defaults_applied():
    payload = blog_post_payload(slug="ten-tips")
    payload["content"] += '<script>alert("x")</script><a href="javascript:alert(1)">bad</a>'
    record, errors = validate_record(BLOG_POSTS, payload)
    assert errors == []
    assert "<script>" not in record["content"]
    assert "javascript:" not in record["content"]
    assert record["published"] is True
    assert record["publishedAt"]
    assert record["categoryId"] is None


def test_blog_post_naive_publish_date_is_treated_as_utc():
    record, errors = validate_record(BLOG_POSTS, blog_post_payload(slug="ten-tips", publishedAt="2024-03-01T10:00"))
    assert errors == []
    assert record["publishedAt"].startswith("2024-03-01T10:00:00")


def test_blog_post_requires_long_enough_content():
    record, errors = validate_record(BLOG_POSTS, blog_post_payload(slug="ten-tips", content="too short"))
    assert record is None
    assert "content" in error_fields(errors)


def test_project_rules():
    record, errors = validate_record(PROJECTS, project_payload(technologies=["", "  "], link="ftp://example.com"))
    assert record is None
    assert {"technologies", "link"} <= error_fields(errors)
    link_error = next(error for error in errors if error.field == "link")
    assert link_error.message == "Must be a valid URL"

    record, errors = validate_record(PROJECTS, project_payload(order="", images=["https://img/1.png", ""]))
    assert errors == []
    assert record["order"] == 0
    assert record["images"] == ["https://img/1.png"]
    assert record["featured"] is False


def test_team_member_social_links_must_be_urls():
    record, errors = validate_record(
        TEAM_MEMBERS,
        {"name": "Arun", "position": "Lead", "bio": "Builds apps for clients.", "twitter": "@arun"},
    )
    assert record is None
    assert "twitter" in error_fields(errors)


def test_subscriber_email_is_lowercased():
    record, errors = validate_record(SUBSCRIBERS, {"email": "  Owner@Example.COM "})
    assert errors == []
    assert record == {"email": "owner@example.com"}


def test_contact_message_requires_valid_email():
    record, errors = validate_record(
        CONTACT_MESSAGES,
        {"name": "Ravi", "email": "not-an-email", "subject": "Quote", "message": "Need a website"},
    )
    assert record is None
    assert "email" in error_fields(errors)


def test_partial_update_is_checked_against_merged_record():
    base, _ = validate_record(CATEGORIES, {"name": "Design", "slug": "design"})
    base.update(id="abc", version=3)

    record, errors = validate_record(CATEGORIES, {"description": "Logos", "version": 99}, base=base)
    assert errors == []
    assert record == {"name": "Design", "slug": "design", "description": "Logos"}

    record, errors = validate_record(CATEGORIES, {"name": "D"}, base=base)
    assert record is None
    assert error_fields(errors) == {"name"}


def test_load_document_keeps_metadata():
    document = {
        "id": "abc",
        "version": 2,
        "createdAt": "2024-01-01T00:00:00Z",
        "updatedAt": "2024-01-02T00:00:00Z",
        "name": "Design",
        "slug": "design",
    }
    record = load_document(CATEGORIES, document)
    assert record["id"] == "abc"
    assert record["version"] == 2
    assert record["createdAt"] == "2024-01-01T00:00:00Z"
    assert record["description"] is None


def test_load_document_rejects_malformed_documents():
    with pytest.raises(DocumentValidationError) as excinfo:
        load_document(CATEGORIES, {"id": "broken", "name": "X"})
    assert excinfo.value.doc_id == "broken"
    assert "slug" in error_fields(excinfo.value.errors)


def test_unknown_collection():
    with pytest.raises(LookupError):
        model_for("invoices")


def test_public_user_hides_password_hash():
    record, errors = validate_record(USERS, {"username": "admin", "passwordHash": "hash", "name": "Admin"})
    assert errors == []
    assert "passwordHash" not in public_user(record)
    assert public_user(None) is None


def test_blog_post_content_length_is_checked_after_sanitizing():
    embed = '<iframe src="https://www.youtube.com/embed/abcdefghijk"></iframe><p>Watch this</p>'
    record, errors = validate_record(BLOG_POSTS, blog_post_payload(slug="video-post", content=embed))
    assert record is None
    assert "content" in error_fields(errors)
