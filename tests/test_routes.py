import json
import re
from datetime import date

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from auth import SESSION_COOKIE, generate_csrf_token
from config import NOT_CONFIGURED_MESSAGE, get_settings
from database import Base
from main import app, current_date, get_db
from models import User
from services import CurrentUser


@pytest.fixture()
def db_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

    def override_get_db():
        db = factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[current_date] = lambda: date(2024, 3, 20)
    yield factory
    app.dependency_overrides.clear()
    engine.dispose()


@pytest.fixture()
def client(db_factory):
    with TestClient(app) as client:
        yield client


def sign_up(client: TestClient, db_factory, email: str = "alex@example.com") -> CurrentUser:
    response = client.post(
        "/auth/sign-up",
        data={
            "csrf_token": generate_csrf_token(),
            "email": email,
            "password": "correct horse",
            "full_name": "Alex Doe",
        },
        follow_redirects=False,
    )
    assert response.status_code == 303
    with db_factory() as db:
        user = db.scalar(select(User).where(User.email == email))
    return CurrentUser.from_model(user)


def add_expense(client: TestClient, user: CurrentUser, htmx: bool = True, **fields):
    data = {
        "csrf_token": generate_csrf_token(user),
        "amount": "45.50",
        "category": "groceries",
        "description": "Weekly shop",
        "date": "2024-03-15",
    }
    data.update(fields)
    headers = {"HX-Request": "true"} if htmx else {}
    return client.post("/expenses", data=data, headers=headers, follow_redirects=False)


def test_signed_out_dashboard_redirects_to_login(client) -> None:
    response = client.get("/", follow_redirects=False)

    assert response.status_code == 303
    assert response.headers["location"] == "/auth/login"


def test_signed_out_panel_is_unauthorized(client) -> None:
    assert client.get("/components/expenses").status_code == 401


def test_dashboard_shell_lists_trailing_twelve_months(client, db_factory) -> None:
    sign_up(client, db_factory)

    response = client.get("/")

    assert response.status_code == 200
    assert "Welcome, Alex Doe" in response.text
    assert "Loading expenses..." in response.text
    months = re.findall(r'<option value="(\d{4}-\d{2})"', response.text)
    assert len(months) == 12
    assert months[0] == "2024-03"
    assert months[11] == "2023-04"


def test_empty_month_renders_placeholder_and_zero_total(client, db_factory) -> None:
    sign_up(client, db_factory)

    response = client.get("/components/expenses", params={"month": "2024-03"})

    assert response.status_code == 200
    assert "No expenses found for this month" in response.text
    assert "$0.00" in response.text
    assert "Expenses for March 2024" in response.text


def test_malformed_month_is_rejected(client, db_factory) -> None:
    sign_up(client, db_factory)

    assert client.get("/components/expenses", params={"month": "2024-3"}).status_code == 400


def test_htmx_submission_resets_form_and_triggers_refresh(client, db_factory) -> None:
    user = sign_up(client, db_factory)

    response = add_expense(client, user)

    assert response.status_code == 200
    triggers = json.loads(response.headers["HX-Trigger"])
    assert triggers == {"expenses-changed": True, "close-expense-dialog": True}
    assert 'name="amount" type="number" step="0.01" min="0" placeholder="0.00" value=""' in response.text
    assert 'value="2024-03-20"' in response.text

    panel = client.get("/components/expenses", params={"month": "2024-03"})
    assert "Weekly shop" in panel.text
    assert "$45.50" in panel.text
    assert 'data-category="groceries"' in panel.text
    assert 'data-category="water"' not in panel.text


def test_htmx_validation_failure_keeps_values(client, db_factory) -> None:
    user = sign_up(client, db_factory)

    response = add_expense(client, user, description="")

    assert response.status_code == 200
    assert "HX-Trigger" not in response.headers
    assert "Description is required" in response.text
    assert 'value="45.50"' in response.text
    assert 'value="2024-03-15"' in response.text


def test_plain_form_submission_redirects_on_success(client, db_factory) -> None:
    user = sign_up(client, db_factory)

    response = add_expense(client, user, htmx=False)

    assert response.status_code == 303
    assert response.headers["location"] == "/"


def test_plain_form_failure_reopens_dialog(client, db_factory) -> None:
    user = sign_up(client, db_factory)

    response = add_expense(client, user, htmx=False, amount="abc")

    assert response.status_code == 400
    assert '<dialog id="expense-dialog" class="modal" open>' in response.text
    assert "Invalid amount" in response.text


def test_plain_form_failure_keeps_selected_month(client, db_factory) -> None:
    user = sign_up(client, db_factory)

    response = add_expense(client, user, htmx=False, amount="abc", month="2024-01")

    assert response.status_code == 400
    assert '<option value="2024-01" selected>' in response.text
    assert '<input type="hidden" name="month" value="2024-01" />' in response.text


def test_plain_form_success_returns_to_selected_month(client, db_factory) -> None:
    user = sign_up(client, db_factory)

    response = add_expense(client, user, htmx=False, month="2024-01")

    assert response.status_code == 303
    assert response.headers["location"] == "/?month=2024-01"


def test_malformed_posted_month_falls_back_to_current(client, db_factory) -> None:
    user = sign_up(client, db_factory)

    response = add_expense(client, user, htmx=False, amount="abc", month="2024-13")

    assert response.status_code == 400
    assert '<option value="2024-03" selected>' in response.text


def test_total_card_uses_configured_currency_symbol(
    client, db_factory, monkeypatch
) -> None:
    monkeypatch.setattr(get_settings(), "currency_symbol", "€")
    sign_up(client, db_factory)

    response = client.get("/components/expenses", params={"month": "2024-03"})

    assert "<span>€</span>" in response.text
    assert "€0.00" in response.text
    assert "<span>$</span>" not in response.text


def test_submission_without_csrf_token_is_rejected(client, db_factory) -> None:
    user = sign_up(client, db_factory)

    response = add_expense(client, user, csrf_token="forged")

    assert response.status_code == 400


def test_month_view_excludes_other_months_and_other_users(client, db_factory) -> None:
    alex = sign_up(client, db_factory)
    add_expense(client, alex, date="2024-01-31", description="January bill")
    add_expense(client, alex, date="2024-02-01", description="February bill")

    january = client.get("/components/expenses", params={"month": "2024-01"})
    assert "January bill" in january.text
    assert "February bill" not in january.text

    client.post("/auth/logout", data={"csrf_token": generate_csrf_token(alex)})
    sign_up(client, db_factory, email="sam@example.com")

    sams_view = client.get("/components/expenses", params={"month": "2024-01"})
    assert "January bill" not in sams_view.text
    assert "No expenses found for this month" in sams_view.text


def test_logout_clears_session(client, db_factory) -> None:
    user = sign_up(client, db_factory)

    response = client.post(
        "/auth/logout",
        data={"csrf_token": generate_csrf_token(user)},
        follow_redirects=False,
    )

    assert response.status_code == 303
    assert response.headers["location"] == "/auth/login"
    assert SESSION_COOKIE not in client.cookies
    assert client.get("/", follow_redirects=False).status_code == 303


def test_login_with_wrong_password_shows_error(client, db_factory) -> None:
    user = sign_up(client, db_factory)
    client.post("/auth/logout", data={"csrf_token": generate_csrf_token(user)})

    response = client.post(
        "/auth/login",
        data={
            "csrf_token": generate_csrf_token(),
            "email": "alex@example.com",
            "password": "wrong password",
        },
    )
    assert response.status_code == 400
    assert "Invalid email or password" in response.text

    response = client.post(
        "/auth/login",
        data={
            "csrf_token": generate_csrf_token(),
            "email": "ALEX@example.com",
            "password": "correct horse",
        },
        follow_redirects=False,
    )
    assert response.status_code == 303
    assert SESSION_COOKIE in response.cookies


def test_duplicate_sign_up_is_rejected(client, db_factory) -> None:
    user = sign_up(client, db_factory)
    client.post("/auth/logout", data={"csrf_token": generate_csrf_token(user)})

    response = client.post(
        "/auth/sign-up",
        data={
            "csrf_token": generate_csrf_token(),
            "email": "alex@example.com",
            "password": "another password",
        },
    )

    assert response.status_code == 400
    assert "already exists" in response.text


def test_missing_session_secret_disables_sign_in(client, monkeypatch) -> None:
    monkeypatch.setattr(get_settings(), "session_secret", None)

    page = client.get("/auth/login")
    assert NOT_CONFIGURED_MESSAGE in page.text

    response = client.post(
        "/auth/login", data={"email": "alex@example.com", "password": "x"}
    )
    assert response.status_code == 503
    assert NOT_CONFIGURED_MESSAGE in response.text


def test_healthz(client) -> None:
    assert client.get("/healthz").json()["status"] == "ok"
