"""Firebase Remote Config exposure probe.

Calls the public Remote Config fetch endpoint with credentials extracted from
an APK. A 200 response means any client holding the app's API key can read
the project's configuration; 401/403 means the project is locked down.
"""

import json
import logging

import httpx
from pydantic import JsonValue

from rcspy.config import Settings, get_settings
from rcspy.models.schemas import RemoteConfigResult

logger = logging.getLogger(__name__)

# The fetch API requires an instance id but does not validate it.
APP_INSTANCE_ID = "required_but_unused_value"


def _reject_constant(token: str) -> None:
    """Refuse the non-JSON tokens NaN, Infinity and -Infinity."""
    raise ValueError(f"Not a JSON value: {token}")


class RemoteConfigService:
    """Checks whether Firebase Remote Config is readable with extracted credentials."""

    def __init__(self, client: httpx.AsyncClient, settings: Settings | None = None):
        """Initialize the probe.

        Args:
            client: Shared HTTP client used for every request.
            settings: Scanner settings; defaults to the cached settings.
        """
        self.client = client
        self.settings = settings or get_settings()

    def fetch_url(self, project_number: str, api_key: str) -> str:
        return (
            f"https://{self.settings.remote_config_host}/v1/projects/{project_number}"
            f"/namespaces/{self.settings.remote_config_namespace}:fetch?key={api_key}"
        )

    @staticmethod
    def project_number_from_app_id(app_id: str) -> str | None:
        """Return the project number of a ``1:<number>:android:<hash>`` App ID."""
        parts = app_id.split(":")
        if len(parts) < 4 or not parts[1].isdigit():
            return None
        return parts[1]

    async def check_remote_config(self, app_id: str, api_key: str) -> RemoteConfigResult:
        """Probe one (App ID, API key) pair."""
        project_number = self.project_number_from_app_id(app_id)
        if project_number is None:
            return RemoteConfigResult.failed("Invalid app ID format")

        try:
            response = await self.client.post(
                self.fetch_url(project_number, api_key),
                json={"appId": app_id, "appInstanceId": APP_INSTANCE_ID},
                timeout=self.settings.remote_config_timeout_seconds,
            )
        except httpx.HTTPError as e:
            logger.debug(f"Remote Config request failed for {app_id}: {e}")
            return RemoteConfigResult.failed(f"Failed to check Remote Config: {e}")

        if response.status_code == 200:
            try:
                data = response.json()
            except ValueError as e:
                return RemoteConfigResult.failed(f"Failed to check Remote Config: {e}")
            logger.info(f"Remote Config accessible for project {project_number}")
            return RemoteConfigResult.accessible_with(self._parse_entries(data))

        if response.status_code in (401, 403):
            return RemoteConfigResult.secure()

        return RemoteConfigResult.failed(
            f"HTTP {response.status_code}: {response.reason_phrase}"
        )

    @staticmethod
    def _parse_entries(data: object) -> dict[str, JsonValue]:
        """Decode Remote Config entries, keeping values that are not JSON as strings."""
        entries: dict[str, JsonValue] = {}
        raw_entries = data.get("entries") if isinstance(data, dict) else None
        if not isinstance(raw_entries, dict):
            return entries

        for key, value in raw_entries.items():
            if isinstance(value, str):
                try:
                    entries[key] = json.loads(value, parse_constant=_reject_constant)
                except ValueError:
                    entries[key] = value
            else:
                entries[key] = value
        return entries

    async def check_multiple_combinations(
        self,
        app_ids: list[str],
        api_keys: list[str],
    ) -> RemoteConfigResult:
        """Try every (App ID, API key) pair until one is accessible.

        Pairs are tried in list order, App IDs in the outer loop. The first
        accessible result is returned immediately. If none is accessible the
        result is secure, unless some pair could not be checked, in which case
        the last probe error is returned.
        """
        last_error: RemoteConfigResult | None = None
        for app_id in app_ids:
            for api_key in api_keys:
                result = await self.check_remote_config(app_id, api_key)
                if result.accessible:
                    return result
                if result.error is not None:
                    last_error = result

        return last_error or RemoteConfigResult.secure()
