import os
import tempfile

os.environ.setdefault("EXPENSES_DATA_DIR", tempfile.mkdtemp(prefix="expenses-test-"))
os.environ.setdefault("EXPENSES_DATABASE_URL", "sqlite://")
os.environ.setdefault("EXPENSES_SESSION_SECRET", "test-session-secret")
os.environ.setdefault("EXPENSES_TIMEZONE", "UTC")

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402

from database import Base  # noqa: E402
from schemas import SignUpIn  # noqa: E402
from services import CurrentUser, UserService  # noqa: E402


@pytest.fixture()
def engine():
    eng = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture()
def session(engine):
    with Session(engine) as session:
        yield session


def make_user(session: Session, email: str = "alex@example.com") -> CurrentUser:
    user = UserService(session).register(
        SignUpIn(email=email, password="correct horse", full_name=None)
    )
    return CurrentUser.from_model(user)
