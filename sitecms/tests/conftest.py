import re
import uuid

import pytest

from sitecms import create_app
from sitecms.store import get_store

CSRF_TOKEN_RE = re.compile(r'name="_csrf_token" value="([^"]+)"')
ADMIN_PASSWORD = "admin123"


def extract_csrf_token(html):
    match = CSRF_TOKEN_RE.search(html or "")
    return match.group(1) if match else None


def build_test_app(tmp_path, monkeypatch, overrides=None):
    db_path = tmp_path / f"site_test_{uuid.uuid4().hex[:8]}.db"
    upload_path = tmp_path / f"uploads_{uuid.uuid4().hex[:8]}"

    monkeypatch.delenv("DOCUMENT_STORE_BACKEND", raising=False)

    config = {
        "TESTING": True,
        "SECRET_KEY": "test-secret-key",
        "APP_ENV": "development",
        "SQLALCHEMY_DATABASE_URI": f"sqlite:///{db_path}",
        "DOCUMENT_STORE_BACKEND": "sql",
        "UPLOAD_FOLDER": str(upload_path),
        "ADMIN_USERNAME": "admin",
        "ADMIN_PASSWORD": ADMIN_PASSWORD,
        "LOG_JSON": False,
        "GA_MEASUREMENT_ID": "",
    }
    if overrides:
        config.update(overrides)
    return create_app(config)


@pytest.fixture()
def app(tmp_path, monkeypatch):
    return build_test_app(tmp_path, monkeypatch)


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def app_ctx(app):
    with app.app_context():
        yield app


@pytest.fixture()
def store(app_ctx):
    return get_store()


def admin_login(client, password=ADMIN_PASSWORD):
    login_page = client.get("/admin/login")
    csrf_token = extract_csrf_token(login_page.get_data(as_text=True))
    assert csrf_token

    response = client.post(
        "/admin/login",
        data={
            "_csrf_token": csrf_token,
            "username": "admin",
            "password": password,
        },
        follow_redirects=False,
    )
    assert response.status_code in (302, 303)
    return response


def api_login(client, remember=False):
    response = client.post(
        "/api/login",
        json={"username": "admin", "password": ADMIN_PASSWORD, "rememberMe": remember},
    )
    assert response.status_code == 200
    return response


def category_payload(**overrides):
    payload = {"name": "Cloud Hosting", "slug": "", "description": "Servers and hosting."}
    payload.update(overrides)
    return payload


def blog_post_payload(**overrides):
    payload = {
        "title": "Ten tips for a faster website",
        "slug": "",
        "excerpt": "Practical steps to speed up a small-business site.",
        "content": "<p>" + "Compress images, cache aggressively and trim scripts. " * 3 + "</p>",
        "authorName": "Priya Raman",
        "published": True,
    }
    payload.update(overrides)
    return payload


def project_payload(**overrides):
    payload = {
        "title": "Billing Suite",
        "description": "Invoicing and GST billing for retail shops.",
        "category": "ERP",
        "technologies": ["Python", "PostgreSQL"],
        "link": "https://example.com/billing",
    }
    payload.update(overrides)
    return payload


def service_payload(**overrides):
    payload = {
        "title": "Web Development",
        "slug": "",
        "description": "Responsive websites built for small businesses.",
        "icon": "Code",
    }
    payload.update(overrides)
    return payload


def team_member_payload(**overrides):
    payload = {
        "name": "Arun Kumar",
        "position": "Lead Developer",
        "bio": "Builds web and mobile apps for local businesses.",
        "linkedIn": "https://www.linkedin.com/in/arun",
    }
    payload.update(overrides)
    return payload


def sample_testimonial(**overrides):
    payload = {
        "name": "Meena S",
        "position": "Owner",
        "company": "Meena Textiles",
        "content": "Our new site doubled the number of enquiries.",
    }
    payload.update(overrides)
    return payload
