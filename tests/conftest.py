import io
import os

# keep test runs from writing log files
os.environ.setdefault("LOG_DIR", "")

import pytest
from PIL import Image

from app import create_app
from storage import Store


@pytest.fixture
def store() -> Store:
    return Store("sqlite://")


@pytest.fixture
def app(tmp_path):
    app = create_app({
        "DATABASE_URL": "sqlite://",
        "UPLOAD_DIR": str(tmp_path / "uploads"),
        "SECRET_KEY": "test",
        "TESTING": True,
        "TOTAL_ROUNDS": 3,
    })
    return app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def app_store(app) -> Store:
    return app.extensions["store"]


def png_bytes(width: int = 400, height: int = 300) -> io.BytesIO:
    buf = io.BytesIO()
    Image.new("RGB", (width, height), "white").save(buf, format="PNG")
    buf.seek(0)
    return buf


def make_user_with_scores(store: Store, name: str, *scores: int) -> int:
    user = store.add_user(name)
    for s in scores:
        store.insert_game_result(user.id, s, 5)
    return user.id
