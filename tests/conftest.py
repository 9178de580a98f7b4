import pytest
from fastapi.testclient import TestClient

from api import ApiClient
from main import create_app
from storage import LocalStorage
from store import Store
from tests.fake_backend import create_backend

BASE_URL = "http://testserver/api"


@pytest.fixture
def backend():
    return create_backend()


@pytest.fixture
def backend_client(backend):
    with TestClient(backend) as client:
        yield client


@pytest.fixture
def storage():
    return LocalStorage()


@pytest.fixture
def api(backend_client, storage):
    return ApiClient(BASE_URL, storage=storage, session=backend_client)


@pytest.fixture
def store():
    return Store()


@pytest.fixture
def storefront(api, storage, store):
    app = create_app(api=api, storage=storage, store=store)
    with TestClient(app) as client:
        yield client


@pytest.fixture
def registered(api):
    """A customer account on the fake backend; the client is left logged out."""
    api.auth.register("ana@example.com", "s3cret", "Ana")
    api.auth.logout()
    return {"email": "ana@example.com", "password": "s3cret"}
