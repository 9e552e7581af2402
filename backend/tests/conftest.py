"""
Root conftest.py — Shared fixtures for ALL tests (unit + integration)

Fixture hierarchy:
  session-scoped  : rsa keys, test_jwks
  function-scoped : db_engine, session_factory, store, meter, seed_upload,
                    fake_storage, fake_ocr, fake_editor, extractor,
                    app_with_overrides, async_client

Environment strategy:
  - The database is an in-memory SQLite (aiosqlite) with the real schema,
    recreated per test. The upserts and conditional updates run unchanged.
  - R2 and the AI provider are replaced by in-process fakes.
  - JWT tokens are built with a test RSA key — no live Clerk instance needed.

How to run:
  pytest                          # all tests
  pytest -m unit                  # unit tests only
  pytest -m integration           # API tests through the ASGI app
  pytest tests/unit/test_auth.py  # single file
"""

from __future__ import annotations

import base64
import os
import time
from pathlib import Path
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from httpx import AsyncClient

# ─────────────────────────────────────────────────────────────────────────────
# Patch settings BEFORE any app imports so modules read test config
# ─────────────────────────────────────────────────────────────────────────────

TEST_KID      = "test-key-id-2024"
TEST_ISSUER   = "https://clerk.test.example.com"
TEST_USER_ID  = "user_test_owner"
OTHER_USER_ID = "user_test_other"
CRON_SECRET   = "test-cron-secret"
WEBHOOK_SECRET = "test-revenuecat-secret"
PUBLIC_BASE   = "https://files.test.example.com"

os.environ.setdefault("DATABASE_URL",              "sqlite+aiosqlite://")
os.environ.setdefault("CLERK_ISSUER",              TEST_ISSUER)
os.environ.setdefault("CRON_SECRET",               CRON_SECRET)
os.environ.setdefault("REVENUECAT_WEBHOOK_SECRET", WEBHOOK_SECRET)
os.environ.setdefault("R2_PUBLIC_URL",             PUBLIC_BASE)
os.environ.setdefault("OPENAI_API_KEY",            "sk-test-key")
os.environ.setdefault("APP_ENV",                   "development")

# 1x1 transparent PNG
PNG_BYTES = base64.b64decode(
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAQAAAC1HAwCAAAAC0lEQVR42mNkYAAAAAYAAjCB0C8AAAAASUVORK5CYII="
)
PNG_B64 = base64.b64encode(PNG_BYTES).decode()


# ─────────────────────────────────────────────────────────────────────────────
# RSA key pair for signing test JWTs (generated once per session)
# ─────────────────────────────────────────────────────────────────────────────

@pytest.fixture(scope="session")
def rsa_private_key():
    """Generate a 2048-bit RSA private key for test JWT signing."""
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def rsa_private_key_pem(rsa_private_key) -> bytes:
    """PEM-encoded private key bytes (used by jose.jwt.encode)."""
    return rsa_private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    )


@pytest.fixture(scope="session")
def test_jwks(rsa_private_key) -> dict:
    """
    Build a JWKS document containing the test RSA public key.
    This is what Clerk's /.well-known/jwks.json returns.
    """
    pub_numbers = rsa_private_key.public_key().public_numbers()

    def _b64url(n: int) -> str:
        byte_length = (n.bit_length() + 7) // 8
        return base64.urlsafe_b64encode(n.to_bytes(byte_length, "big")).rstrip(b"=").decode()

    return {
        "keys": [
            {
                "kty": "RSA",
                "use": "sig",
                "alg": "RS256",
                "kid": TEST_KID,
                "n":   _b64url(pub_numbers.n),
                "e":   _b64url(pub_numbers.e),
            }
        ]
    }


# ─────────────────────────────────────────────────────────────────────────────
# JWT token factory
# ─────────────────────────────────────────────────────────────────────────────

@pytest.fixture
def make_token(rsa_private_key_pem):
    """
    Factory fixture: returns a function that builds signed Clerk-style JWTs.

    Usage:
        token = make_token()
        token = make_token(user_id="user_x")
        token = make_token(expired=True)
    """
    from jose import jwt as jose_jwt

    def _build(
        user_id:  str  = TEST_USER_ID,
        expired:  bool = False,
        no_sub:   bool = False,
        issuer:   str  = TEST_ISSUER,
        kid:      str  = TEST_KID,
    ) -> str:
        now = int(time.time())
        claims: dict = {
            "iss": issuer,
            "exp": now - 60 if expired else now + 3600,
            "iat": now,
            "sid": "sess_test",
        }
        if not no_sub:
            claims["sub"] = user_id

        return jose_jwt.encode(
            claims,
            rsa_private_key_pem,
            algorithm="RS256",
            headers={"kid": kid},
        )

    return _build


@pytest.fixture
def owner_payload():
    """Pre-built TokenPayload for the owner of seeded uploads."""
    from note_companion.auth.token import TokenPayload
    return TokenPayload(sub=TEST_USER_ID, exp=int(time.time()) + 3600, iss=TEST_ISSUER)


# ─────────────────────────────────────────────────────────────────────────────
# Database: in-memory SQLite with the production schema
# ─────────────────────────────────────────────────────────────────────────────

@pytest_asyncio.fixture
async def db_engine():
    from sqlalchemy.ext.asyncio import create_async_engine
    from sqlalchemy.pool import StaticPool

    from note_companion.models.uploads import Base

    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    from sqlalchemy.ext.asyncio import async_sessionmaker
    return async_sessionmaker(db_engine, expire_on_commit=False)


@pytest.fixture
def store(session_factory):
    from note_companion.db.uploads_repo import SqlAlchemyUploadRecordStore
    return SqlAlchemyUploadRecordStore(session_factory)


@pytest.fixture
def meter(session_factory):
    from note_companion.observability.usage import UsageMeteringService
    return UsageMeteringService(session_factory)


@pytest.fixture
def seed_upload(session_factory):
    """
    Factory fixture: inserts an uploaded_files row and returns its id.

    Usage:
        file_id = await seed_upload()
        file_id = await seed_upload(file_type="text/plain", object_key="uploads/u/a.txt")
    """
    from note_companion.models.uploads import UploadedFile

    async def _seed(**fields) -> int:
        values = {
            "user_id":       TEST_USER_ID,
            "file_type":     "image/png",
            "process_type":  "standard-ocr",
            "status":        "pending",
            "original_name": "sketch.png",
            "public_url":    f"{PUBLIC_BASE}/uploads/{TEST_USER_ID}/sketch.png",
        }
        values.update(fields)
        async with session_factory() as session:
            async with session.begin():
                row = UploadedFile(**values)
                session.add(row)
            return row.id

    return _seed


# ─────────────────────────────────────────────────────────────────────────────
# Fakes for R2 and the AI provider
# ─────────────────────────────────────────────────────────────────────────────

class FakeObjectStore:
    """In-memory stand-in for R2StorageService."""

    def __init__(self, objects: dict[str, bytes] | None = None):
        self.objects: dict[str, bytes] = dict(objects or {})
        self.uploads: list[tuple[str, bytes, str]] = []
        self.download_error: Exception | None = None
        self.upload_error: Exception | None = None

    async def download(self, key: str) -> bytes:
        from note_companion.storage.r2 import DownloadError
        if self.download_error is not None:
            raise self.download_error
        if key not in self.objects:
            raise DownloadError(f"Object not found: {key}", key)
        return self.objects[key]

    async def upload(self, key: str, body: bytes, content_type: str) -> None:
        if self.upload_error is not None:
            raise self.upload_error
        self.objects[key] = body
        self.uploads.append((key, body, content_type))

    def public_url(self, key: str) -> str:
        return f"{PUBLIC_BASE}/{key}"


class FakeOcr:
    """VisionOcrModel returning a canned transcript (or raising `error`)."""

    def __init__(self, text: str = "# Notes\n\nhello world", total_tokens: int | None = 120):
        self.text = text
        self.total_tokens = total_tokens
        self.error: Exception | None = None
        self.calls: list[str] = []

    async def transcribe(self, image_url: str):
        from note_companion.llm.vision import OcrTranscript
        self.calls.append(image_url)
        if self.error is not None:
            raise self.error
        return OcrTranscript(text=self.text, total_tokens=self.total_tokens)


class FakeImageEditor:
    """ImageEditModel that records the temp file it was handed."""

    def __init__(self, payload: str | None = PNG_B64):
        self.payload = payload
        self.error: Exception | None = None
        self.seen_paths: list[Path] = []
        self.seen_bytes: list[bytes] = []
        self.prompts: list[str] = []

    async def digitize(self, image_path: Path, mime_type: str, prompt: str) -> str | None:
        self.seen_paths.append(image_path)
        self.seen_bytes.append(image_path.read_bytes())
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return self.payload


@pytest.fixture
def fake_storage() -> FakeObjectStore:
    return FakeObjectStore({f"uploads/{TEST_USER_ID}/sketch.png": PNG_BYTES})


@pytest.fixture
def fake_ocr() -> FakeOcr:
    return FakeOcr()


@pytest.fixture
def fake_editor() -> FakeImageEditor:
    return FakeImageEditor()


@pytest.fixture
def extractor(fake_storage, fake_ocr, fake_editor, tmp_path):
    from note_companion.processing.extractor import ContentExtractor
    return ContentExtractor(
        storage=fake_storage,
        ocr=fake_ocr,
        image_editor=fake_editor,
        temp_dir=tmp_path,
    )


@pytest.fixture
def worker(store, extractor, meter):
    from note_companion.workers.batch import BatchWorker
    return BatchWorker(store=store, extractor=extractor, meter=meter)


# ─────────────────────────────────────────────────────────────────────────────
# FastAPI test client with dependency overrides
# ─────────────────────────────────────────────────────────────────────────────

@pytest.fixture
def app_with_overrides(owner_payload, store, meter, worker):
    """
    FastAPI app with ALL external dependencies overridden:
      - get_current_user  → owner_payload (no JWT verification)
      - get_upload_store  → SQLite-backed store
      - get_usage_meter   → SQLite-backed meter
      - get_batch_worker  → BatchWorker over the fakes

    The cron and webhook secrets are still checked for real.
    """
    from note_companion.auth.dependencies import get_batch_worker, get_upload_store, get_usage_meter
    from note_companion.auth.token import get_current_user
    from note_companion.main import app

    app.dependency_overrides[get_current_user] = lambda: owner_payload
    app.dependency_overrides[get_upload_store] = lambda: store
    app.dependency_overrides[get_usage_meter]  = lambda: meter
    app.dependency_overrides[get_batch_worker] = lambda: worker

    yield app

    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def async_client(app_with_overrides) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP test client using the overridden app (lifespan not run)."""
    from httpx import ASGITransport
    transport = ASGITransport(app=app_with_overrides)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
