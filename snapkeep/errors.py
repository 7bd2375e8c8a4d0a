# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Human-friendly error message helpers for snapkeep.

These helpers centralize wording for common configuration errors so that
all modules present consistent, actionable messages.
"""


def explain_invalid_number_env(name: str, value: str | None, expected: str) -> str:
    """
    Explain that a numeric environment variable could not be used.
    """

    return f"Invalid {name} value: {value!r}. It must be {expected}."


def explain_invalid_retention_days_env(value: str | None) -> str:
    """
    Explain that SNAPKEEP_RETENTION_DAYS is invalid.
    """

    return explain_invalid_number_env(
        "SNAPKEEP_RETENTION_DAYS", value, "a non-negative integer number of days"
    )


def explain_invalid_compression_env(value: str | None) -> str:
    """
    Explain that SNAPKEEP_COMPRESSION is invalid.
    """

    return (
        f"Invalid SNAPKEEP_COMPRESSION value: {value!r}. "
        "Expected 'gzip' (snapshots named *.db.gz) or 'zstd' (*.db.zst)."
    )


def explain_invalid_file_mode_env(value: str | None) -> str:
    """
    Explain that SNAPKEEP_FILE_MODE is invalid.
    """

    return (
        f"Invalid SNAPKEEP_FILE_MODE value: {value!r}. "
        "Expected an octal permission string such as '644' or '0640'."
    )


def explain_invalid_owner_env(value: str | None) -> str:
    """
    Explain that SNAPKEEP_OWNER cannot be resolved.
    """

    return (
        f"Invalid SNAPKEEP_OWNER value: {value!r}. "
        "Expected 'user:group' using names known to this host or numeric ids, "
        "for example 'root:root' or '0:0'."
    )


def explain_invalid_flag_env(name: str, value: str | None) -> str:
    """
    Explain that a boolean environment variable is not recognized.
    """

    return (
        f"Invalid {name} value: {value!r}. "
        "Expected one of: 1/0, true/false, yes/no, on/off."
    )


def explain_missing_admin_key_env() -> str:
    """
    Explain that the admin API key is not configured.
    """

    return (
        "SNAPKEEP_ADMIN_API_KEY environment variable not set. "
        "Admin endpoints stay locked until a key is configured."
    )
