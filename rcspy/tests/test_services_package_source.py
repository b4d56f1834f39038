"""Tests for package sources, the worker pool and the analysis context."""

import httpx
import pytest

from rcspy.services.context import USER_AGENT, AnalysisContext
from rcspy.services.package_source import DirectoryPackageSource
from rcspy.services.worker_pool import WorkerPool
from rcspy.tests.conftest import create_test_archive


class TestDirectoryPackageSource:
    @pytest.mark.asyncio
    async def test_lists_archives_with_icons(self, tmp_path):
        create_test_archive(tmp_path / "com.example.b.apk", {"a.txt": "x"})
        create_test_archive(tmp_path / "com.example.a.apk", {"a.txt": "x"})
        (tmp_path / "com.example.a.png").write_bytes(b"\x89PNG")
        (tmp_path / "notes.txt").write_text("not a package")

        packages = await DirectoryPackageSource(tmp_path).list_installed_packages()

        assert [p.package_id for p in packages] == ["com.example.a", "com.example.b"]
        assert packages[0].icon_bytes == b"\x89PNG"
        assert packages[1].icon_bytes is None
        assert packages[0].installer_path == str(tmp_path / "com.example.a.apk")
        assert "icon_bytes" not in packages[0].model_dump()

    @pytest.mark.asyncio
    async def test_missing_directory_is_empty(self, tmp_path):
        assert await DirectoryPackageSource(tmp_path / "missing").list_installed_packages() == []


class TestWorkerPool:
    def test_submit_before_open_fails(self):
        with pytest.raises(RuntimeError):
            WorkerPool(kind="thread").submit(len, "abc")

    @pytest.mark.asyncio
    async def test_submit_returns_result(self):
        with WorkerPool(kind="thread", max_workers=2) as pool:
            assert pool.is_open
            assert await pool.submit(len, "abcd") == 4
        assert not pool.is_open


class TestAnalysisContext:
    @pytest.mark.asyncio
    async def test_opens_and_closes_resources(self, settings):
        seen: list[httpx.Request] = []

        def handler(request):
            seen.append(request)
            return httpx.Response(204)

        context = AnalysisContext(settings, transport=httpx.MockTransport(handler))
        with pytest.raises(RuntimeError):
            context.client

        async with context:
            assert settings.cache_dir.is_dir()
            assert context.pool.is_open
            await context.client.get("https://example.com/")

        assert seen[0].headers["user-agent"] == USER_AGENT
        assert not context.pool.is_open
        with pytest.raises(RuntimeError):
            context.client
