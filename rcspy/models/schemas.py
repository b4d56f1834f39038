"""Pydantic schemas for extracted credentials, probe outcomes and cached analyses."""

from collections.abc import Callable
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    JsonValue,
    field_serializer,
    model_validator,
)

# Sample rows kept per exposed table.
MAX_SAMPLE_ROWS = 3


# ============================================================================
# Package Schemas
# ============================================================================


class PackageInfo(BaseModel):
    """An installed package as reported by a package source."""

    id: str | None = None
    display_name: str | None = None
    icon_bytes: bytes | None = Field(default=None, exclude=True)
    installer_path: str | None = None

    @property
    def package_id(self) -> str:
        return self.id or self.display_name or ""

    @property
    def sort_key(self) -> str:
        return (self.display_name or self.id or "").lower()


# ============================================================================
# Extraction Schemas
# ============================================================================


class ExtractedCredentials(BaseModel):
    """Credentials found in one package archive.

    ``app_ids`` and ``api_keys`` belong to Firebase; ``project_urls`` and
    ``backend_keys`` belong to Supabase. Sets are serialized sorted so the
    cache document is stable across runs.
    """

    model_config = ConfigDict(frozen=True)

    app_ids: frozenset[str] = frozenset()
    api_keys: frozenset[str] = frozenset()
    project_urls: frozenset[str] = frozenset()
    backend_keys: frozenset[str] = frozenset()
    error: str | None = None

    @field_serializer("app_ids", "api_keys", "project_urls", "backend_keys")
    def _serialize_sorted(self, value: frozenset[str]) -> list[str]:
        return sorted(value)

    @classmethod
    def failed(cls, message: str) -> "ExtractedCredentials":
        return cls(error=message)

    @property
    def has_firebase(self) -> bool:
        return bool(self.app_ids or self.api_keys)

    @property
    def has_supabase(self) -> bool:
        # Detected on URL or key; probing needs both (see can_probe_supabase).
        return bool(self.project_urls or self.backend_keys)

    @property
    def has_any_backend(self) -> bool:
        return self.has_firebase or self.has_supabase

    @property
    def can_probe_firebase(self) -> bool:
        return bool(self.app_ids and self.api_keys)

    @property
    def can_probe_supabase(self) -> bool:
        return bool(self.project_urls and self.backend_keys)


# ============================================================================
# Probe Schemas
# ============================================================================


class RemoteConfigResult(BaseModel):
    """Outcome of probing the Firebase Remote Config fetch endpoint.

    ``accessible=False`` with no ``error`` means the endpoint refused the
    credentials. ``accessible=False`` with an ``error`` means the probe could
    not reach a verdict and must not be read as secure.
    """

    model_config = ConfigDict(frozen=True)

    accessible: bool
    values: dict[str, JsonValue] | None = None
    error: str | None = None

    @classmethod
    def accessible_with(cls, values: dict[str, JsonValue]) -> "RemoteConfigResult":
        return cls(accessible=True, values=values)

    @classmethod
    def secure(cls) -> "RemoteConfigResult":
        return cls(accessible=False)

    @classmethod
    def failed(cls, message: str) -> "RemoteConfigResult":
        return cls(accessible=False, error=message)

    @property
    def value_count(self) -> int:
        return len(self.values or {})


class StorageBucketInfo(BaseModel):
    """A Supabase storage bucket visible to the anonymous key."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    is_public: bool = False
    exposed_files: list[str] = []


class ExposedTableInfo(BaseModel):
    """A table readable with the anonymous key."""

    model_config = ConfigDict(frozen=True)

    name: str
    row_count: int | None = None
    columns: list[str] = []
    sample_rows: list[dict[str, JsonValue]] = Field(default=[], max_length=MAX_SAMPLE_ROWS)


class SupabaseSecurityResult(BaseModel):
    """Outcome of probing a Supabase project's REST and storage surface."""

    model_config = ConfigDict(frozen=True)

    vulnerable: bool
    working_url: str | None = None
    working_key: str | None = None
    public_buckets: list[StorageBucketInfo] = []
    all_buckets: list[StorageBucketInfo] = []
    exposed_tables: list[ExposedTableInfo] = []
    exposed_objects: list[str] = []
    error: str | None = None

    @classmethod
    def secure(cls) -> "SupabaseSecurityResult":
        return cls(vulnerable=False)

    @classmethod
    def failed(cls, message: str) -> "SupabaseSecurityResult":
        return cls(vulnerable=False, error=message)


# ============================================================================
# Analysis Schemas
# ============================================================================


class AnalysisStage(str, Enum):
    """Progress stage of a package inside a run. Never persisted."""

    PENDING = "pending"
    EXTRACTING = "extracting"
    PROBING_CONFIG = "probing_config"
    PROBING_BACKEND = "probing_backend"
    DONE = "done"


class PackageAnalysis(BaseModel):
    """Cached outcome of the full pipeline for one package."""

    model_config = ConfigDict(frozen=True)

    package_id: str
    credentials: ExtractedCredentials = ExtractedCredentials()
    remote_config: RemoteConfigResult | None = None
    supabase: SupabaseSecurityResult | None = None
    error: str | None = None
    analyzed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def failed(cls, package_id: str, message: str) -> "PackageAnalysis":
        return cls(
            package_id=package_id,
            credentials=ExtractedCredentials.failed(message),
            error=message,
        )

    @property
    def has_firebase(self) -> bool:
        return self.error is None and self.credentials.has_firebase

    @property
    def has_supabase(self) -> bool:
        return self.error is None and self.credentials.has_supabase

    @property
    def has_any_backend(self) -> bool:
        return self.has_firebase or self.has_supabase

    @property
    def remote_config_accessible(self) -> bool:
        return self.remote_config is not None and self.remote_config.accessible

    @property
    def supabase_vulnerable(self) -> bool:
        return self.supabase is not None and self.supabase.vulnerable

    @property
    def has_any_vulnerability(self) -> bool:
        return self.remote_config_accessible or self.supabase_vulnerable


class AnalysisProgress(BaseModel):
    """Aggregate counters over a package set.

    Built either from the full record set (``from_records``) or from counters
    merged once per completed batch; ``completed`` never exceeds ``total``.
    """

    model_config = ConfigDict(frozen=True)

    total: int = 0
    completed: int = 0
    with_firebase: int = 0
    with_supabase: int = 0
    vulnerable: int = 0
    cached: int = 0
    is_complete: bool = False

    @model_validator(mode="before")
    @classmethod
    def _clamp_completed(cls, data: Any) -> Any:
        if isinstance(data, dict):
            total = data.get("total", 0)
            if data.get("completed", 0) > total:
                data = {**data, "completed": total}
        return data

    @classmethod
    def from_records(
        cls,
        total: int,
        records: list[PackageAnalysis],
        cached: int = 0,
        is_complete: bool = True,
        is_vulnerable: Callable[[PackageAnalysis], bool] | None = None,
    ) -> "AnalysisProgress":
        """Recompute every counter from a set of records.

        Args:
            total: Number of known packages.
            records: Records of known packages that finished analysis.
            cached: Number of records that came from the cache.
            is_complete: Whether no analysis is pending.
            is_vulnerable: Optional predicate deciding what counts as
                vulnerable; defaults to ``PackageAnalysis.has_any_vulnerability``.
        """
        check = is_vulnerable or (lambda record: record.has_any_vulnerability)
        return cls(
            total=total,
            completed=len(records),
            with_firebase=sum(1 for r in records if r.has_firebase),
            with_supabase=sum(1 for r in records if r.has_supabase),
            vulnerable=sum(1 for r in records if check(r)),
            cached=cached,
            is_complete=is_complete,
        )

    @property
    def fraction(self) -> float:
        return self.completed / self.total if self.total > 0 else 0.0

    @property
    def remaining(self) -> int:
        return self.total - self.completed


class AppFilter(str, Enum):
    """List filters over analyzed packages."""

    ALL = "all"
    VULNERABLE = "vulnerable"
    FIREBASE = "firebase"
    SUPABASE = "supabase"
    SECURE = "secure"
    NO_BACKEND = "no_backend"
    ERRORS = "errors"


# ============================================================================
# Response Schemas
# ============================================================================


class ProgressResponse(BaseModel):
    """Progress endpoint payload."""

    state: str
    is_analyzing: bool
    new_packages: int
    progress: AnalysisProgress
    fraction: float
    remaining: int


class PackageResultResponse(BaseModel):
    """One package with its analysis outcome and in-flight stage."""

    package_id: str
    display_name: str | None = None
    stage: AnalysisStage
    vulnerable: bool
    analysis: PackageAnalysis | None = None


class RunAcceptedResponse(BaseModel):
    """Acknowledgement for a scheduled run."""

    status: str = "scheduled"
    operation: str
    package_id: str | None = None
