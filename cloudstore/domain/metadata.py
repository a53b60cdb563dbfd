"""Canonical metadata and its mapping to backend-native placement.

Callers pass header-like keys in any casing. Recognized keys come out in
canonical casing and travel wherever the backend keeps them (request
parameters, content settings); everything else is custom metadata.
"""

from __future__ import annotations

from typing import Mapping

from cloudstore.common.errors import ValidationError
from cloudstore.infra.storage.client import BackendMetadata, BackendProfile

CANONICAL_KEYS: tuple[str, ...] = (
    "Content-Type",
    "Content-Encoding",
    "Content-Language",
    "Cache-Control",
    "Content-Disposition",
    "Content-MD5",
)

_CANONICAL_BY_LOWER = {key.lower(): key for key in CANONICAL_KEYS}


def canonical_key(key: str) -> str:
    """Return the canonical casing of a recognized key, or ``key`` unchanged."""
    return _CANONICAL_BY_LOWER.get(key.strip().lower(), key)


def is_canonical(key: str) -> bool:
    return key.strip().lower() in _CANONICAL_BY_LOWER


def canonicalize(metadata: Mapping[str, object] | None) -> dict[str, str]:
    """Normalize caller metadata into the canonical map.

    ``None`` values are dropped and other values are stringified. When two
    keys differ only in casing the later one wins.
    """
    result: dict[str, str] = {}
    if not metadata:
        return result
    for key, value in metadata.items():
        if not isinstance(key, str) or not key.strip():
            raise ValidationError("metadata keys must be non-empty strings")
        if value is None:
            continue
        result[canonical_key(key)] = str(value)
    return result


def _custom_key(key: str, profile: BackendProfile) -> str:
    prefix = profile.custom_metadata_prefix
    if profile.custom_key_pattern is not None and not profile.custom_key_pattern.match(
        key
    ):
        raise ValidationError(
            f"Invalid metadata key {key!r}: must match "
            f"{profile.custom_key_pattern.pattern}"
        )
    if prefix and not key.lower().startswith(prefix.lower()):
        return prefix + key
    return key


def validate_custom(custom: Mapping[str, str], profile: BackendProfile) -> dict[str, str]:
    """Apply the backend's custom metadata limits and prefix.

    Raises:
        ValidationError: If there are too many entries or a key contains
            characters the backend does not accept.
    """
    limit = profile.max_custom_metadata
    if limit is not None and len(custom) > limit:
        raise ValidationError(
            f"Cannot send more than {limit} custom metadata entries "
            f"to {profile.provider}"
        )
    return {_custom_key(key, profile): value for key, value in custom.items()}


def to_backend(canonical: Mapping[str, str], profile: BackendProfile) -> BackendMetadata:
    """Split a canonical map into native headers and custom metadata."""
    headers: dict[str, str] = {}
    custom: dict[str, str] = {}
    for key, value in canonical.items():
        native = profile.native_headers.get(key)
        if native is not None:
            headers[native] = value
        else:
            custom[key] = value
    return BackendMetadata(headers=headers, custom=validate_custom(custom, profile))


def from_backend(
    headers: Mapping[str, str | None],
    custom: Mapping[str, str] | None,
    profile: BackendProfile,
) -> dict[str, str]:
    """Rebuild the canonical map from a backend's native representation."""
    canonical_by_native = {
        native.lower(): key for key, native in profile.native_headers.items()
    }
    result: dict[str, str] = {}
    for native, value in headers.items():
        if value is None:
            continue
        key = canonical_by_native.get(native.lower())
        if key is not None:
            result[key] = value
    prefix = profile.custom_metadata_prefix
    for key, value in (custom or {}).items():
        if prefix and key.lower().startswith(prefix.lower()):
            key = key[len(prefix) :]
        result[canonical_key(key)] = value
    return result
