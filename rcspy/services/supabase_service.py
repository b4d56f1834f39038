"""Supabase exposure probe.

Uses an anonymous key extracted from an APK against the project's storage and
PostgREST APIs. Each check is best effort: a refused or failing request only
means that resource is not exposed.

Checks:
    - Storage bucket listing (public buckets)
    - ``storage.objects`` read through PostgREST with the storage profile
    - A sweep of common table names for anonymous row reads
"""

import logging

import httpx

from rcspy.config import Settings, get_settings
from rcspy.models.schemas import (
    MAX_SAMPLE_ROWS,
    ExposedTableInfo,
    StorageBucketInfo,
    SupabaseSecurityResult,
)

logger = logging.getLogger(__name__)

COMMON_TABLE_NAMES = (
    "users",
    "profiles",
    "posts",
    "comments",
    "messages",
    "orders",
    "products",
    "items",
    "documents",
    "files",
    "settings",
    "config",
    "data",
    "logs",
    "events",
    "notifications",
    "sessions",
    "tokens",
    "accounts",
    "customers",
)

STORAGE_OBJECT_LIMIT = 50
TABLE_ROW_LIMIT = 5


def normalize_project_url(url: str) -> str:
    """Strip one trailing slash and default the scheme to https."""
    normalized = url.strip()
    if normalized.endswith("/"):
        normalized = normalized[:-1]
    if not normalized.startswith("http"):
        normalized = f"https://{normalized}"
    return normalized


class SupabaseService:
    """Checks whether a Supabase project exposes data to its anonymous key."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        settings: Settings | None = None,
        table_names: tuple[str, ...] = COMMON_TABLE_NAMES,
    ):
        self.client = client
        self.settings = settings or get_settings()
        self.table_names = table_names

    async def check_security(self, project_url: str, anon_key: str) -> SupabaseSecurityResult:
        """Run the bucket, storage object and table checks for one URL/key pair."""
        base_url = normalize_project_url(project_url)
        try:
            httpx.URL(base_url)
        except httpx.InvalidURL as e:
            return SupabaseSecurityResult.failed(f"Invalid project URL: {e}")

        headers = {
            "apikey": anon_key,
            "Authorization": f"Bearer {anon_key}",
        }

        all_buckets = await self._check_storage_buckets(base_url, headers)
        exposed_objects = await self._check_storage_objects(base_url, headers)
        exposed_tables = await self._check_exposed_tables(base_url, headers)

        public_buckets = [
            bucket.model_copy(update={
                "exposed_files": [
                    obj for obj in exposed_objects if obj.startswith(f"{bucket.id}/")
                ],
            })
            for bucket in all_buckets
            if bucket.is_public
        ]

        if not (public_buckets or exposed_tables or exposed_objects):
            return SupabaseSecurityResult.secure()

        logger.info(
            f"Supabase project {base_url} exposes {len(public_buckets)} public buckets, "
            f"{len(exposed_tables)} tables, {len(exposed_objects)} storage objects"
        )
        return SupabaseSecurityResult(
            vulnerable=True,
            working_url=base_url,
            working_key=anon_key,
            public_buckets=public_buckets,
            all_buckets=all_buckets,
            exposed_tables=exposed_tables,
            exposed_objects=exposed_objects,
        )

    async def _get_json(
        self,
        url: str,
        headers: dict[str, str],
        timeout: float,
    ) -> object | None:
        """GET ``url`` and return the decoded body of a 200 response, else None."""
        try:
            response = await self.client.get(url, headers=headers, timeout=timeout)
        except httpx.HTTPError as e:
            logger.debug(f"Supabase request failed for {url}: {e}")
            return None

        if response.status_code != 200:
            return None
        try:
            return response.json()
        except ValueError:
            logger.debug(f"Supabase returned a non-JSON body for {url}")
            return None

    async def _check_storage_buckets(
        self,
        base_url: str,
        headers: dict[str, str],
    ) -> list[StorageBucketInfo]:
        data = await self._get_json(
            f"{base_url}/storage/v1/bucket",
            headers,
            self.settings.supabase_timeout_seconds,
        )
        if not isinstance(data, list):
            return []

        buckets: list[StorageBucketInfo] = []
        for bucket in data:
            if not isinstance(bucket, dict):
                continue
            buckets.append(StorageBucketInfo(
                id=str(bucket.get("id") or ""),
                name=str(bucket.get("name") or ""),
                is_public=bucket.get("public") is True,
            ))
        return buckets

    async def _check_storage_objects(
        self,
        base_url: str,
        headers: dict[str, str],
    ) -> list[str]:
        data = await self._get_json(
            f"{base_url}/rest/v1/objects?select=name,bucket_id&limit={STORAGE_OBJECT_LIMIT}",
            {**headers, "Accept-Profile": "storage"},
            self.settings.supabase_timeout_seconds,
        )
        if not isinstance(data, list):
            return []

        objects: list[str] = []
        for obj in data[:STORAGE_OBJECT_LIMIT]:
            if not isinstance(obj, dict) or not isinstance(obj.get("name"), str):
                continue
            bucket_id = obj.get("bucket_id")
            objects.append(f"{bucket_id}/{obj['name']}" if bucket_id else obj["name"])
        return objects

    async def _check_exposed_tables(
        self,
        base_url: str,
        headers: dict[str, str],
    ) -> list[ExposedTableInfo]:
        exposed: list[ExposedTableInfo] = []

        for table_name in self.table_names:
            data = await self._get_json(
                f"{base_url}/rest/v1/{table_name}?select=*&limit={TABLE_ROW_LIMIT}",
                headers,
                self.settings.supabase_table_timeout_seconds,
            )
            if not isinstance(data, list) or not data or not isinstance(data[0], dict):
                continue

            rows = [row for row in data if isinstance(row, dict)]
            exposed.append(ExposedTableInfo(
                name=table_name,
                row_count=len(rows),
                columns=list(rows[0].keys()),
                sample_rows=rows[:MAX_SAMPLE_ROWS],
            ))

        return exposed

    async def check_multiple_combinations(
        self,
        project_urls: list[str],
        anon_keys: list[str],
    ) -> SupabaseSecurityResult:
        """Try every (URL, key) pair until one is vulnerable.

        URLs form the outer loop. The first vulnerable result is returned
        immediately; otherwise the project is reported secure, or with the
        last error if some pair could not be checked at all.
        """
        last_error: SupabaseSecurityResult | None = None
        for project_url in project_urls:
            for anon_key in anon_keys:
                result = await self.check_security(project_url, anon_key)
                if result.vulnerable:
                    return result
                if result.error is not None:
                    last_error = result

        return last_error or SupabaseSecurityResult.secure()
