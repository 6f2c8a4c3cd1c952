import base64
import os
import sys

import pytest
from fastapi.testclient import TestClient

# Add the parent directory to sys.path so we can import main
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

import config
from main import create_app

TEST_USERNAME = "uploader"
TEST_PASSWORD = "s3cret:with:colons"


def basic_auth(username: str, password: str) -> dict:
    token = base64.b64encode(f"{username}:{password}".encode()).decode()
    return {"Authorization": f"Basic {token}"}


@pytest.fixture
def upload_dir(tmp_path):
    return tmp_path / "data"


@pytest.fixture
def server_config(upload_dir):
    return config.ServerConfig(
        host="127.0.0.1",
        port=8080,
        upload_dir=upload_dir,
        access_prefix="files",
        username=TEST_USERNAME,
        password=TEST_PASSWORD,
        max_upload_size=64 * 1024,
    )


@pytest.fixture
def client(server_config):
    # Entering the client runs the lifespan, which initializes storage
    with TestClient(create_app(server_config)) as test_client:
        yield test_client


@pytest.fixture
def auth_headers():
    return basic_auth(TEST_USERNAME, TEST_PASSWORD)


def stored_files(upload_dir):
    """All regular files under the upload root, staging area included."""
    return [p for p in upload_dir.rglob("*") if p.is_file()]
