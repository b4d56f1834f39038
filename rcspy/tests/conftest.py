"""Shared fixtures and archive helpers for the rcspy test suite."""

import asyncio
import base64
import json
import zipfile
from pathlib import Path

import httpx
import pytest
import pytest_asyncio

from rcspy.config import Settings
from rcspy.models.schemas import PackageInfo
from rcspy.services.context import AnalysisContext

# Assembled at runtime so the test sources do not carry credential-shaped literals.
FIREBASE_APP_ID = "1:123456789:android:" + "abc123def"
FIREBASE_API_KEY = "AIza" + "SyABCDEFGHIJKLMNOPQRSTUVWXYZ0123456"
SUPABASE_URL = "https://abcdefghijklmnop" + ".supabase.co"
SUPABASE_PUBLISHABLE_KEY = "sb_" + "publishable_" + "AbCdEfGhIjKlMnOpQrStUvWx"


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode().rstrip("=")


def make_jwt(payload: dict) -> str:
    """Build a JWT-shaped token with ``payload`` and a dummy signature."""
    header = _b64url(json.dumps({"alg": "HS256", "typ": "JWT"}).encode())
    body = _b64url(json.dumps(payload).encode())
    signature = _b64url(b"s" * 32)
    return f"{header}.{body}.{signature}"


def supabase_anon_jwt() -> str:
    return make_jwt({
        "iss": "supabase",
        "ref": "abcdefghijklmnop",
        "role": "anon",
        "iat": 1700000000,
        "exp": 2000000000,
    })


def auth0_jwt() -> str:
    return make_jwt({
        "iss": "https://example.eu.auth0.com/",
        "sub": "google-oauth2|1234567890",
        "aud": "https://api.example.com",
        "iat": 1700000000,
        "exp": 2000000000,
    })


def create_test_archive(path: Path, files: dict[str, str | bytes], compression: int = zipfile.ZIP_DEFLATED) -> Path:
    """Write a zip archive at ``path`` holding ``files``."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(path, "w", compression=compression) as zf:
        for name, content in files.items():
            zf.writestr(name, content)
    return path


def make_package(tmp_path: Path, package_id: str, files: dict[str, str | bytes] | None = None) -> PackageInfo:
    """Create a package; ``files=None`` means the package has no archive path."""
    if files is None:
        return PackageInfo(id=package_id, display_name=package_id)
    archive = create_test_archive(tmp_path / "apks" / f"{package_id}.apk", files)
    return PackageInfo(id=package_id, display_name=package_id, installer_path=str(archive))


def firebase_files() -> dict[str, str]:
    return {
        "firebase-config.json": json.dumps({
            "app_id": FIREBASE_APP_ID,
            "api_key": FIREBASE_API_KEY,
        }),
    }


def supabase_files(key: str | None = None) -> dict[str, bytes]:
    key = key or supabase_anon_jwt()
    return {
        "classes.dex": (
            b"dex\n035\x00\x12\x00\x00"
            + SUPABASE_URL.encode()
            + b"\x00\x07\x01"
            + key.encode()
            + b"\x00\xff"
        ),
    }


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        cache_dir=tmp_path / "cache",
        packages_dir=tmp_path / "apks",
        worker_pool_kind="thread",
        max_parallel_analysis=4,
    )


def json_router(routes: dict[str, httpx.Response], default_status: int = 404):
    """Build a MockTransport handler answering by URL path.

    Every handled request is appended to ``handler.requests``.
    """
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        response = routes.get(request.url.path)
        if response is None:
            return httpx.Response(default_status, json={"message": "not found"})
        return response

    handler.requests = requests
    return handler


@pytest_asyncio.fixture
async def secure_context(settings: Settings):
    """Opened context whose remote services refuse every request."""
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(403, json={"error": "forbidden"})

    context = AnalysisContext(settings, transport=httpx.MockTransport(handler))
    await context.open()
    try:
        yield context
    finally:
        await context.close()


@pytest.fixture
def api_orchestrator(settings: Settings):
    """Orchestrator with three loaded packages, installed on the API app.

    ``com.example.leaky`` and ``com.example.locked`` come from the cache;
    ``com.example.nopath`` has no archive and is analyzed into an error record.
    Only the cache is opened, so runs must not reach the pool or network.
    """
    from rcspy.main import app
    from rcspy.models.schemas import ExtractedCredentials, PackageAnalysis, RemoteConfigResult
    from rcspy.services.analysis_orchestrator import AnalysisOrchestrator
    from rcspy.services.package_source import StaticPackageSource

    credentials = ExtractedCredentials(
        app_ids=frozenset({FIREBASE_APP_ID}),
        api_keys=frozenset({FIREBASE_API_KEY}),
    )
    context = AnalysisContext(settings)
    context.cache.open()

    async def _seed():
        await context.cache.save(PackageAnalysis(
            package_id="com.example.leaky",
            credentials=credentials,
            remote_config=RemoteConfigResult.accessible_with({"api_url": "https://internal.example.com"}),
        ))
        await context.cache.save(PackageAnalysis(
            package_id="com.example.locked",
            credentials=credentials,
            remote_config=RemoteConfigResult.secure(),
        ))

    packages = [
        PackageInfo(id="com.example.leaky", display_name="Leaky", installer_path="/nonexistent/leaky.apk"),
        PackageInfo(id="com.example.locked", display_name="Locked", installer_path="/nonexistent/locked.apk"),
        PackageInfo(id="com.example.nopath", display_name="No Path"),
    ]
    orchestrator = AnalysisOrchestrator(context, StaticPackageSource(packages))
    asyncio.run(_seed())
    asyncio.run(orchestrator.load_and_resume())

    previous = getattr(app.state, "orchestrator", None)
    app.state.orchestrator = orchestrator
    yield orchestrator
    app.state.orchestrator = previous
    context.cache.close()


@pytest.fixture
def client(api_orchestrator):
    """Test client for the API app. The lifespan is not run."""
    from fastapi.testclient import TestClient

    from rcspy.main import app

    return TestClient(app)
