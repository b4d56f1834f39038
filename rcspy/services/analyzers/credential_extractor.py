"""Firebase and Supabase credential extraction from APK archives.

Scans archive members that are likely to carry backend configuration
(resource tables, DEX code, JSON/XML configs, native libraries used by
Flutter builds) for string-level credential patterns:

    - Google App IDs (``1:<project number>:android:<hash>``)
    - Google API keys (``AIza...``)
    - Supabase project URLs (``https://<ref>.supabase.co``)
    - Supabase legacy JWT keys (``eyJ...``), accepted only after the payload
      is decoded and shows Supabase claims
    - Supabase publishable / secret keys (``sb_publishable_...``,
      ``sb_secret_...``)

Extraction is CPU and I/O bound. ``extract_credentials`` is a module-level
function so it can be shipped to a worker process; ``CredentialExtractor.analyze``
awaits it through a ``WorkerPool``.
"""

import base64
import binascii
import logging
import re
import zipfile
import zlib
from pathlib import Path

from rcspy.models.schemas import ExtractedCredentials
from rcspy.services.analyzers.byte_strings import extract_search_corpus
from rcspy.services.worker_pool import WorkerPool

logger = logging.getLogger(__name__)


class CredentialExtractor:
    """Extracts backend credentials from the members of an APK archive."""

    name = "credential_extractor"

    MEMBER_SUFFIXES = (".arsc", ".xml", ".json", ".dex", ".properties", ".so")
    MEMBER_KEYWORDS = ("google-services", "firebase", "supabase", "config")

    APP_ID_PATTERN = re.compile(r"\d+:\d+:android:[a-f0-9]+", re.IGNORECASE)
    API_KEY_PATTERN = re.compile(r"AIza[0-9A-Za-z_-]{35}")
    PROJECT_URL_PATTERN = re.compile(r"https?://[a-z0-9-]+\.supabase\.co", re.IGNORECASE)
    LEGACY_KEY_PATTERN = re.compile(
        r"eyJ[A-Za-z0-9_-]{20,}\.eyJ[A-Za-z0-9_-]{20,}\.[A-Za-z0-9_-]{20,}"
    )
    NEW_KEY_PATTERN = re.compile(r"sb_(?:publishable|secret)_[A-Za-z0-9_-]{20,}")

    SUPABASE_CLAIM_MARKERS = ("supabase", "anon", "service_role", "authenticated")

    def should_scan_member(self, member_name: str) -> bool:
        """Return True when an archive member may carry backend configuration."""
        name = member_name.lower()
        return name.endswith(self.MEMBER_SUFFIXES) or any(
            keyword in name for keyword in self.MEMBER_KEYWORDS
        )

    def extract(self, apk_path: str | Path) -> ExtractedCredentials:
        """Scan an APK archive and return every credential found in it.

        Never raises for a bad input: a missing or corrupt archive yields
        credentials carrying an ``error``.
        """
        path = Path(apk_path)
        if not path.is_file():
            return ExtractedCredentials.failed("APK file not found")

        app_ids: set[str] = set()
        api_keys: set[str] = set()
        project_urls: set[str] = set()
        backend_keys: set[str] = set()

        try:
            with zipfile.ZipFile(path, "r") as apk:
                for info in apk.infolist():
                    if info.is_dir() or not self.should_scan_member(info.filename):
                        continue

                    try:
                        content = apk.read(info)
                    except (
                        zipfile.BadZipFile,
                        zlib.error,
                        EOFError,
                        NotImplementedError,
                        RuntimeError,
                        OSError,
                    ) as e:
                        # Truncated or corrupt member; the rest of the archive is still scanned.
                        logger.debug(f"Skipping unreadable member {info.filename} in {path.name}: {e}")
                        continue

                    corpus = extract_search_corpus(content)
                    app_ids.update(self.APP_ID_PATTERN.findall(corpus))
                    api_keys.update(self.API_KEY_PATTERN.findall(corpus))
                    project_urls.update(self.PROJECT_URL_PATTERN.findall(corpus))
                    backend_keys.update(self.NEW_KEY_PATTERN.findall(corpus))
                    backend_keys.update(
                        key for key in self.LEGACY_KEY_PATTERN.findall(corpus)
                        if self.is_supabase_jwt(key)
                    )
        except (zipfile.BadZipFile, ValueError, OSError) as e:
            logger.warning(f"Failed to open archive {path}: {e}")
            return ExtractedCredentials.failed(f"Failed to analyze APK: {e}")

        return ExtractedCredentials(
            app_ids=frozenset(app_ids),
            api_keys=frozenset(api_keys),
            project_urls=frozenset(project_urls),
            backend_keys=frozenset(backend_keys),
        )

    def is_supabase_jwt(self, token: str) -> bool:
        """Check that a JWT-shaped token carries Supabase claims.

        The key regex also matches tokens from unrelated issuers (Auth0,
        Firebase Auth, ...). A token is kept only when its payload contains
        ``"iss"`` together with ``supabase`` or one of the Supabase roles.
        """
        parts = token.split(".")
        if len(parts) != 3:
            return False

        payload = decode_jwt_segment(parts[1])
        if payload is None or '"iss"' not in payload:
            return False
        return any(marker in payload for marker in self.SUPABASE_CLAIM_MARKERS)

    async def analyze(self, apk_path: str | Path, pool: WorkerPool) -> ExtractedCredentials:
        """Run ``extract`` on the worker pool and await its result."""
        return await pool.submit(extract_credentials, str(apk_path))


def decode_jwt_segment(segment: str) -> str | None:
    """Decode one URL-safe base64 JWT segment to text, or None if it is not base64."""
    normalized = segment.replace("-", "+").replace("_", "/")
    normalized += "=" * (-len(normalized) % 4)
    try:
        return base64.b64decode(normalized, validate=True).decode("utf-8", errors="replace")
    except (binascii.Error, ValueError):
        return None


def extract_credentials(apk_path: str) -> ExtractedCredentials:
    """Worker entry point for ``CredentialExtractor.extract``."""
    return CredentialExtractor().extract(apk_path)
