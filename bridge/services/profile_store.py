"""Estimator profile store.

Persists one estimator profile (pricing config + catalog snapshot) per
user in a single JSON document:

    {"users": {"<user_id>": {"config": {...}, "catalog": [...]}}}

Single-process only; concurrent writers are not coordinated.
"""

import json
import os
from typing import Any, Dict, List, Mapping, Optional

import structlog

from config.errors import ErrorCode, EstimatorError, ValidationError
from config.settings import settings
from models.catalog import CatalogItem
from models.estimator_config import EstimatorConfig
from validators.domain_normalizer import (
    get_default_estimator_config,
    normalize_catalog_item,
    normalize_estimator_config,
)

logger = structlog.get_logger(__name__)


class _Profile:
    """In-memory profile, always normalized."""

    def __init__(self, config: EstimatorConfig, catalog: List[CatalogItem]):
        self.config = config
        self.catalog = catalog

    def to_dict(self) -> Dict[str, Any]:
        return {
            "config": self.config.to_dict(),
            "catalog": [item.to_dict() for item in self.catalog],
        }


class EstimatorProfileStore:
    """JSON file store for per-user estimator profiles.

    Profiles are loaded once on construction. Every mutation rewrites the
    whole file atomically (temp file + rename). Returned values are plain
    dicts owned by the caller.
    """

    def __init__(self, path: Optional[str] = None):
        """Initialize the store.

        Args:
            path: JSON file path. Defaults to ``settings.estimator_store_path``.

        Raises:
            EstimatorError: If the file exists but is not valid JSON.
        """
        self.path = path or settings.estimator_store_path
        self._profiles: Dict[str, _Profile] = {}
        self._load()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def get_profile(self, user_id: str) -> Dict[str, Any]:
        """Return ``{config, catalog}`` for a user, creating a default profile.

        Raises:
            ValidationError: If user_id is blank.
        """
        key = self._user_key(user_id)
        profile = self._profiles.get(key)
        if profile is None:
            profile = _Profile(get_default_estimator_config(), [])
            self._profiles[key] = profile
        return profile.to_dict()

    def upsert_config(self, user_id: str, patch: Mapping[str, Any]) -> Dict[str, Any]:
        """Merge a partial config over the user's current config and persist.

        Args:
            user_id: Profile owner.
            patch: Partial config (camelCase or snake_case keys).

        Returns:
            The merged config.

        Raises:
            ValidationError: On a blank user id or an invalid config value.
            EstimatorError: If the store cannot be written.
        """
        key = self._user_key(user_id)
        if not isinstance(patch, Mapping):
            raise ValidationError("config must be an object", field="config")

        current = self._profiles.get(key)
        base = current.config if current else get_default_estimator_config()
        catalog = current.catalog if current else []
        updated = _Profile(normalize_estimator_config(patch, base=base), catalog)

        self._commit(key, updated)
        logger.info("estimator_config_updated", user_id=key, fields=sorted(patch.keys()))
        return updated.config.to_dict()

    def replace_catalog(self, user_id: str, items: List[Any]) -> List[Dict[str, Any]]:
        """Replace the user's catalog wholesale and persist.

        Items are normalized; a repeated SKU keeps its last definition, at
        the position of its first appearance.

        Raises:
            ValidationError: On a blank user id, a non-list, or an invalid item.
            EstimatorError: If the store cannot be written.
        """
        key = self._user_key(user_id)
        if not isinstance(items, (list, tuple)):
            raise ValidationError("items must be a list", field="items")

        by_sku: Dict[str, CatalogItem] = {}
        for item in items:
            normalized = normalize_catalog_item(item)
            by_sku[normalized.sku] = normalized

        current = self._profiles.get(key)
        config = current.config if current else get_default_estimator_config()
        updated = _Profile(config, list(by_sku.values()))

        self._commit(key, updated)
        logger.info("estimator_catalog_replaced", user_id=key, items=len(updated.catalog))
        return [item.to_dict() for item in updated.catalog]

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    @staticmethod
    def _user_key(user_id: Any) -> str:
        if not isinstance(user_id, str) or not user_id.strip():
            raise ValidationError("user_id is required", field="user_id")
        return user_id.strip()

    def _load(self) -> None:
        if not os.path.exists(self.path):
            return
        try:
            with open(self.path, "r", encoding="utf-8") as handle:
                raw = handle.read()
            data = json.loads(raw) if raw.strip() else {}
        except (OSError, ValueError) as e:
            logger.error("estimator_store_load_failed", path=self.path, error=str(e))
            raise EstimatorError(
                code=ErrorCode.STORE_READ_FAILED,
                message=f"Failed to load estimator store: {str(e)}",
                details={"path": self.path},
            )

        users = data.get("users") if isinstance(data, dict) else None
        if not isinstance(users, dict):
            return

        for user_id, stored in users.items():
            if not str(user_id).strip():
                continue
            try:
                self._profiles[user_id] = self._normalize_profile(stored)
            except ValidationError as e:
                logger.warning("estimator_profile_skipped", user_id=user_id, error=e.message)

        logger.info("estimator_store_loaded", path=self.path, profiles=len(self._profiles))

    @staticmethod
    def _normalize_profile(stored: Any) -> _Profile:
        stored = stored if isinstance(stored, Mapping) else {}
        config = normalize_estimator_config(stored.get("config") or {})
        raw_catalog = stored.get("catalog")
        catalog = [normalize_catalog_item(item) for item in raw_catalog] if isinstance(raw_catalog, list) else []
        return _Profile(config, catalog)

    def _commit(self, user_id: str, profile: _Profile) -> None:
        """Persist with ``profile`` applied; memory changes only on success."""
        snapshot = {key: value.to_dict() for key, value in self._profiles.items()}
        snapshot[user_id] = profile.to_dict()
        self._write({"users": snapshot})
        self._profiles[user_id] = profile

    def _write(self, data: Dict[str, Any]) -> None:
        tmp_path = f"{self.path}.tmp"
        try:
            parent = os.path.dirname(self.path)
            if parent:
                os.makedirs(parent, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as handle:
                json.dump(data, handle, indent=2)
            os.replace(tmp_path, self.path)
        except OSError as e:
            logger.error("estimator_store_write_failed", path=self.path, error=str(e))
            raise EstimatorError(
                code=ErrorCode.STORE_WRITE_FAILED,
                message=f"Failed to persist estimator store: {str(e)}",
                details={"path": self.path},
            )
