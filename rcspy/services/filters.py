"""Vulnerability rules and list filters over analyzed packages."""

from rcspy.config import Settings
from rcspy.models.schemas import AppFilter, PackageAnalysis


def is_really_vulnerable(record: PackageAnalysis, settings: Settings) -> bool:
    """Decide whether a record counts as vulnerable.

    An exposed Supabase project always counts. An accessible Remote Config
    counts unless empty configs are hidden and it exposes fewer than
    ``settings.min_config_values`` entries.
    """
    if record.supabase_vulnerable:
        return True
    if not record.remote_config_accessible:
        return False
    if settings.hide_empty_remote_config:
        return record.remote_config.value_count >= settings.min_config_values
    return True


def matches_filter(record: PackageAnalysis | None, app_filter: AppFilter, settings: Settings) -> bool:
    """Return True when ``record`` belongs in the ``app_filter`` list.

    Packages without a record (not analyzed yet) only appear under ``ALL``.
    """
    if app_filter == AppFilter.ALL:
        return True
    if record is None:
        return False

    if app_filter == AppFilter.VULNERABLE:
        return is_really_vulnerable(record, settings)
    if app_filter == AppFilter.FIREBASE:
        return record.has_firebase
    if app_filter == AppFilter.SUPABASE:
        return record.has_supabase
    if app_filter == AppFilter.SECURE:
        return record.has_any_backend and not is_really_vulnerable(record, settings)
    if app_filter == AppFilter.NO_BACKEND:
        return record.error is None and not record.has_any_backend
    if app_filter == AppFilter.ERRORS:
        return record.error is not None
    return False
