"""Loading of the unit catalog and lesson documents."""
import json
import logging
from typing import Any, Dict, Optional

import httpx

from dictbot import monitoring
from dictbot.config import settings
from dictbot.models.lesson_models import (
    REQUIRED_UNIT_FIELDS,
    LessonUnit,
    UnitIndex,
    UnitInfo,
)
from dictbot.services.errors import InvalidUnitError, LessonLoadError

logger = logging.getLogger(__name__)


def validate_unit_payload(payload: Any) -> Dict[str, Any]:
    """Check an uploaded lesson document and return it unchanged.

    Raises:
        InvalidUnitError: if the document is not an object or lacks
            unit_id, unit_title, words or sentences.
    """
    if not isinstance(payload, dict):
        raise InvalidUnitError("Unit JSON must be an object")
    missing = [name for name in REQUIRED_UNIT_FIELDS if payload.get(name) in (None, "")]
    if missing:
        raise InvalidUnitError(f"Invalid unit JSON: missing {'/'.join(missing)}")
    if not isinstance(payload["words"], list) or not isinstance(payload["sentences"], list):
        raise InvalidUnitError("Invalid unit JSON: words and sentences must be lists")
    try:
        LessonUnit.from_dict(payload)
    except (KeyError, TypeError, AttributeError) as e:
        raise InvalidUnitError(f"Invalid unit JSON: bad item {e}") from e
    return payload


class LessonLoader:
    """Fetches the unit index and per-unit lesson documents over HTTP."""

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        base_url: Optional[str] = None,
        index_name: Optional[str] = None,
        default_unit: Optional[str] = None,
    ):
        """Initialize the loader; a shared client may be passed in."""
        self.base_url = (base_url or settings.lessons.base_url).rstrip("/")
        self.index_name = index_name or settings.lessons.index_name
        self.default_unit = default_unit or settings.lessons.default_unit
        self._client = client
        self._owns_client = client is None
        self.index = UnitIndex()
        self.uploads: Dict[str, Dict[str, Any]] = {}

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=settings.lessons.fetch_timeout)
        return self._client

    async def close(self) -> None:
        """Close the HTTP client if the loader created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def url_for(self, name: str) -> str:
        return f"{self.base_url}/{name}"

    def resolve_url(self, data_url: str) -> str:
        """Absolute URL of a catalog dataUrl; relative ones are taken from the lesson host."""
        return str(httpx.URL(self.base_url + "/").join(data_url))

    async def _fetch_json(self, url: str) -> Any:
        try:
            response = await self.client.get(url)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            raise LessonLoadError(f"HTTP error! status: {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise LessonLoadError(f"Request to {url} failed: {e}") from e
        except json.JSONDecodeError as e:
            raise LessonLoadError(f"Invalid JSON at {url}: {e}") from e

    async def load_index(self) -> bool:
        """Fetch the unit catalog; on failure the catalog is empty and False is returned."""
        url = self.url_for(self.index_name)
        try:
            data = await self._fetch_json(url)
            index = UnitIndex.from_dict(data)
        except (LessonLoadError, KeyError, TypeError, AttributeError) as e:
            logger.error(f"Failed to load unit index from {url}: {e}")
            monitoring.lesson_load_failures.labels(source="index").inc()
            self.index = UnitIndex()
            return False

        # Uploaded units stay selectable after the catalog is refreshed
        for payload in self.uploads.values():
            index.upsert(UnitInfo.from_upload(payload))
        self.index = index
        logger.info(f"Loaded unit index with {len(index.units)} units")
        return True

    def resolve_initial_unit(self, requested: Optional[str]) -> str:
        """Requested unit if the catalog knows it, otherwise the default unit."""
        if requested and self.index.find(requested):
            return requested
        return self.default_unit

    async def load_unit(self, unit_id: str) -> Optional[LessonUnit]:
        """Load a unit from its upload, its dataUrl or the conventional static path."""
        info = self.index.find(unit_id)

        try:
            if info and info.is_upload:
                payload = self.uploads.get(unit_id)
                if payload is None:
                    raise LessonLoadError(f"Uploaded unit {unit_id} is no longer available")
                data = payload
            elif info and info.data_url:
                data = await self._fetch_json(self.resolve_url(info.data_url))
            else:
                data = await self._fetch_json(self.url_for(f"{unit_id}.json"))
            unit = LessonUnit.from_dict(data)
        except (LessonLoadError, KeyError, TypeError, AttributeError) as e:
            logger.error(f"Failed to load unit {unit_id}: {e}")
            monitoring.lesson_load_failures.labels(source="unit").inc()
            return None

        logger.info(f"Unit {unit_id} loaded: {len(unit.words)} words, {len(unit.sentences)} sentences")
        return unit

    def register_upload(self, payload: Any) -> UnitInfo:
        """Validate an uploaded document and make it selectable.

        Nothing is changed when validation fails.
        """
        validate_unit_payload(payload)
        info = UnitInfo.from_upload(payload)
        self.uploads[info.id] = payload
        self.index.upsert(info)
        logger.info(f"Registered uploaded unit {info.id} ({info.title})")
        return info
