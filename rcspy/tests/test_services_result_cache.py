"""Tests for the JSON result cache."""

import asyncio
import json
import threading

import pytest

from rcspy.models.schemas import (
    ExposedTableInfo,
    ExtractedCredentials,
    PackageAnalysis,
    RemoteConfigResult,
    StorageBucketInfo,
    SupabaseSecurityResult,
)
from rcspy.services.result_cache import ANALYZED_FILENAME, CACHE_FILENAME, ResultCache
from rcspy.tests.conftest import (
    FIREBASE_API_KEY,
    FIREBASE_APP_ID,
    SUPABASE_URL,
    supabase_anon_jwt,
)


def _full_record(package_id: str = "com.example.full") -> PackageAnalysis:
    return PackageAnalysis(
        package_id=package_id,
        credentials=ExtractedCredentials(
            app_ids=frozenset({FIREBASE_APP_ID}),
            api_keys=frozenset({FIREBASE_API_KEY}),
            project_urls=frozenset({SUPABASE_URL}),
            backend_keys=frozenset({supabase_anon_jwt()}),
        ),
        remote_config=RemoteConfigResult.accessible_with({
            "flag": True,
            "layout": {"columns": 2},
            "labels": ["a", "b"],
        }),
        supabase=SupabaseSecurityResult(
            vulnerable=True,
            working_url=SUPABASE_URL,
            working_key=supabase_anon_jwt(),
            public_buckets=[
                StorageBucketInfo(id="avatars", name="avatars", is_public=True, exposed_files=["avatars/a.png"]),
            ],
            all_buckets=[
                StorageBucketInfo(id="avatars", name="avatars", is_public=True, exposed_files=["avatars/a.png"]),
                StorageBucketInfo(id="private", name="private"),
            ],
            exposed_tables=[
                ExposedTableInfo(
                    name="users",
                    row_count=2,
                    columns=["id", "email"],
                    sample_rows=[{"id": 1, "email": None}, {"id": 2, "email": "b@example.com"}],
                ),
            ],
            exposed_objects=["avatars/a.png"],
        ),
    )


class TestResultCache:
    @pytest.fixture
    def cache(self, tmp_path):
        cache = ResultCache(tmp_path / "cache")
        cache.open()
        yield cache
        cache.close()

    @pytest.mark.asyncio
    async def test_round_trip_preserves_record(self, cache):
        record = _full_record()

        await cache.save(record)

        loaded = cache.get(record.package_id)
        assert loaded == record
        assert loaded.supabase.exposed_tables[0].sample_rows[0]["email"] is None
        assert loaded.credentials.app_ids == {FIREBASE_APP_ID}

    @pytest.mark.asyncio
    async def test_round_trip_survives_reopen(self, cache, tmp_path):
        record = _full_record()
        await cache.save(record)

        reopened = ResultCache(tmp_path / "cache")
        reopened.open()

        assert reopened.load_all() == {record.package_id: record}

    @pytest.mark.asyncio
    async def test_analyzed_ids_track_records(self, cache):
        await cache.save(PackageAnalysis(package_id="a"))
        await cache.save(PackageAnalysis(package_id="b"))
        assert cache.analyzed_ids() == {"a", "b"}

        await cache.remove("a")
        assert cache.analyzed_ids() == {"b"}
        assert set(cache.load_all()) == {"b"}

        analyzed = json.loads((cache.cache_dir / ANALYZED_FILENAME).read_text())
        assert analyzed == ["b"]

    @pytest.mark.asyncio
    async def test_save_replaces_wholesale(self, cache):
        await cache.save(_full_record("pkg"))
        await cache.save(PackageAnalysis.failed("pkg", "No APK path"))

        record = cache.get("pkg")
        assert record.error == "No APK path"
        assert record.remote_config is None
        assert record.supabase is None

    @pytest.mark.asyncio
    async def test_clear_all(self, cache):
        await cache.save(PackageAnalysis(package_id="a"))

        await cache.clear_all()

        assert cache.load_all() == {}
        assert cache.analyzed_ids() == set()

    @pytest.mark.asyncio
    async def test_concurrent_saves_are_not_lost(self, cache):
        ids = [f"pkg{i}" for i in range(12)]

        await asyncio.gather(*(cache.save(PackageAnalysis(package_id=i)) for i in ids))

        assert set(cache.load_all()) == set(ids)
        assert cache.analyzed_ids() == set(ids)

    def test_missing_documents_are_empty(self, cache):
        assert cache.load_all() == {}
        assert cache.analyzed_ids() == set()
        assert cache.get("anything") is None

    def test_corrupt_cache_document_is_empty(self, cache):
        (cache.cache_dir / CACHE_FILENAME).write_text("{not json")
        (cache.cache_dir / ANALYZED_FILENAME).write_text('["a"]')

        assert cache.load_all() == {}
        assert cache.analyzed_ids() == set()

    def test_non_mapping_document_is_empty(self, cache):
        (cache.cache_dir / CACHE_FILENAME).write_text("[1, 2, 3]")
        assert cache.load_all() == {}

    def test_invalid_entry_is_dropped(self, cache):
        good = PackageAnalysis(package_id="good").model_dump(mode="json")
        (cache.cache_dir / CACHE_FILENAME).write_text(json.dumps({
            "good": good,
            "bad": {"credentials": "not an object"},
        }))

        assert set(cache.load_all()) == {"good"}

    @pytest.mark.asyncio
    async def test_write_before_open_fails(self, tmp_path):
        cache = ResultCache(tmp_path / "closed")

        with pytest.raises(RuntimeError):
            await cache.save(PackageAnalysis(package_id="a"))

    @pytest.mark.asyncio
    async def test_no_temporary_files_left_behind(self, cache):
        await cache.save(PackageAnalysis(package_id="a"))

        names = sorted(p.name for p in cache.cache_dir.iterdir())
        assert names == [ANALYZED_FILENAME, CACHE_FILENAME]

    @pytest.mark.asyncio
    async def test_mutations_read_the_mapping_off_the_event_loop(self, cache, monkeypatch):
        loop_thread = threading.current_thread()
        reader_threads: list[threading.Thread] = []
        load_all = cache.load_all

        def recording_load_all():
            reader_threads.append(threading.current_thread())
            return load_all()

        monkeypatch.setattr(cache, "load_all", recording_load_all)

        await cache.save(PackageAnalysis(package_id="a"))
        await cache.remove("a")

        assert len(reader_threads) == 2
        assert all(thread is not loop_thread for thread in reader_threads)
