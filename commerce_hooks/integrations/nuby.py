"""
Client for the Nuby (Arrendasoft) public property API.
"""

import json
import re
from datetime import datetime
from typing import List, Optional

import httpx
from loguru import logger

from commerce_hooks.config import settings

INVALID_JSON_RETRY_LIMIT = 10

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")

LIST_FILTERS = (
    "listing_start_date",
    "listing_end_date",
    "created_start_date",
    "created_end_date",
    "updated_start_date",
    "updated_end_date",
)


class NubyApiError(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None, body: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


def normalize_instance(instance: str) -> str:
    """Accept "acme", "https://acme.arrendasoft.co/..." or similar and return "acme"."""
    instance = instance.strip().lower()
    instance = re.sub(r"^https?://", "", instance)
    return re.sub(r"\.arrendasoft\.co.*$", "", instance)


def instance_base_url(instance: str) -> str:
    return f"https://{normalize_instance(instance)}.arrendasoft.co"


def sanitize_body(text: str) -> str:
    """Strip a leading BOM and control characters other than tab, LF and CR."""
    return _CONTROL_CHARS.sub("", text.removeprefix("\ufeff"))


class NubyClient:
    def __init__(
        self,
        instance: str,
        client_id: str = "",
        secret_key: str = "",
        token: str = "",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.instance = normalize_instance(instance)
        self.client_id = client_id
        self.secret_key = secret_key
        self.base_url = f"{instance_base_url(instance)}/service/v2/public"
        self._token = token.strip() if token else None
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=settings.HTTP_TIMEOUT_SECONDS,
            transport=self._transport,
        )

    async def ensure_token(self) -> str:
        """Use the stored API token, falling back to a username/password login."""
        if self._token:
            return self._token

        logger.info("[Nuby] No API token stored, logging in with client credentials")
        async with self._client() as client:
            response = await client.post(
                "/auth/login", json={"username": self.client_id, "password": self.secret_key}
            )
        try:
            token = response.json().get("token")
        except ValueError:
            raise NubyApiError(
                f"Invalid login response: {response.text[:200]}", response.status_code, response.text
            )
        if not token:
            raise NubyApiError(f"Login failed: {response.text[:200]}", response.status_code, response.text)

        self._token = token
        return token

    async def _get(self, path: str, params: Optional[dict] = None):
        token = await self.ensure_token()
        async with self._client() as client:
            response = await client.get(path, params=params, headers={"Authorization": f"Bearer {token}"})

        if response.status_code >= 400:
            logger.error(f"[Nuby] API error {response.status_code} on {path}: {response.text[:500]}")
            raise NubyApiError(f"Nuby API error: {response.status_code}", response.status_code, response.text)

        try:
            return json.loads(sanitize_body(response.text))
        except ValueError:
            raise NubyApiError(f"Invalid JSON: {response.text[:200]}", response.status_code, response.text)

    async def list_properties(self, page: int = 1, limit: Optional[int] = None, **filters) -> List[dict]:
        params = {"page": page}
        if limit:
            params["limit"] = limit
        for key in LIST_FILTERS:
            if filters.get(key):
                params[key] = filters[key]

        logger.debug(f"[Nuby] GET /properties {params}")
        return await self._get("/properties", params)

    async def get_property_by_code(self, code: str) -> dict:
        return await self._get(f"/properties/{code}")

    async def sync_all_properties(self) -> List[dict]:
        limit = settings.NUBY_PAGE_LIMIT
        properties: List[dict] = []

        for page in range(1, settings.NUBY_MAX_PAGES + 1):
            batch = await self.list_properties(page=page, limit=limit)
            properties.extend(batch)
            if len(batch) < limit:
                break

        return properties

    async def get_updated_properties_since(self, since: datetime) -> List[dict]:
        """
        Properties changed since ``since``.

        The vendor answers 400 to the date filters, so every page is fetched
        and ``since`` is informational only. Results are de-duplicated by code.
        """
        logger.info(f"[Nuby] Fetching properties updated since {since.isoformat()}")
        limit = settings.NUBY_PAGE_LIMIT
        seen = set()
        properties: List[dict] = []

        for page in range(1, settings.NUBY_MAX_PAGES + 1):
            try:
                batch = await self.list_properties(page=page, limit=limit)
            except NubyApiError as exc:
                if not str(exc).startswith("Invalid JSON"):
                    raise
                logger.warning(f"[Nuby] Invalid JSON on page {page}, retrying with limit={INVALID_JSON_RETRY_LIMIT}")
                batch = await self.list_properties(page=page, limit=INVALID_JSON_RETRY_LIMIT)

            for item in batch:
                code = item.get("codigo")
                if code not in seen:
                    seen.add(code)
                    properties.append(item)

            if len(batch) < limit:
                break

        return properties
