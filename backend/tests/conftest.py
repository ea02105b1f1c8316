"""Shared fixtures: in-memory Motor database, API client and seeded owners."""
import uuid
from typing import Dict, Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from mongomock_motor import AsyncMongoMockClient

from auth import create_user_token
from documents import StoredDocument
from server import app, get_db, get_document_storage
from store import EntityStore


class InMemoryDocumentStorage:
    """Stands in for the GridFS bucket in API tests."""

    def __init__(self):
        self.files: Dict[str, StoredDocument] = {}

    async def upload(self, owner_user_id, original_filename, content, content_type):
        filename = f"{owner_user_id}_{uuid.uuid4().hex}_{original_filename}"
        self.files[filename] = StoredDocument(filename, content, content_type, owner_user_id)
        return f"/api/files/{filename}"

    async def open(self, filename) -> Optional[StoredDocument]:
        return self.files.get(filename)


@pytest.fixture
def db():
    return AsyncMongoMockClient()[f"healthnest_test_{uuid.uuid4().hex[:8]}"]


@pytest.fixture
def document_storage():
    return InMemoryDocumentStorage()


@pytest_asyncio.fixture
async def client(db, document_storage):
    """Async test client wired to the in-memory database."""
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_document_storage] = lambda: document_storage

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.pop(get_db, None)
    app.dependency_overrides.pop(get_document_storage, None)


async def insert_user(db, email: str, first_name: str = "Test") -> str:
    return await EntityStore(db["users"]).insert({
        "firstName": first_name,
        "lastName": "",
        "emails": [email],
        "mobileNumbers": [],
        "preferences": {},
        "onboardingCompleted": False,
    })


def auth_headers(user_id: str) -> Dict[str, str]:
    return {"Authorization": f"Bearer {create_user_token(user_id)}"}


@pytest_asyncio.fixture
async def owner_id(db):
    return await insert_user(db, "owner@healthnest.io", "Owner")


@pytest_asyncio.fixture
async def other_id(db):
    return await insert_user(db, "other@healthnest.io", "Other")


@pytest.fixture
def owner_headers(owner_id):
    return auth_headers(owner_id)


@pytest.fixture
def other_headers(other_id):
    return auth_headers(other_id)


@pytest.fixture
def patient_payload():
    return {
        "firstName": "Asha",
        "lastName": "Rao",
        "dateOfBirth": "1984-03-12",
        "gender": "female",
        "bloodGroup": "O+",
        "hospitalIdentifiers": [
            {"systemName": "Apollo", "identifierType": "MRN", "value": "AP-1001"}
        ],
        "mobileNumbers": [{"countryCode": "+91", "number": "9876543210"}],
    }


@pytest_asyncio.fixture
async def patient_id(client, owner_headers, patient_payload):
    response = await client.post("/api/patients", json=patient_payload, headers=owner_headers)
    assert response.status_code == 201, response.text
    return response.json()["id"]
