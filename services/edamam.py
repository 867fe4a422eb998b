"""
Edamam nutrition-data lookup, used as a remote composition source.

Queries "100 g <ingredient>" so the reply is directly per 100 g.
"""

from __future__ import annotations

import logging

import httpx

from config import settings
from core.errors import LookupUnavailable
from core.models.recipe import CompositionRecord

_LOG = logging.getLogger(__name__)

EDAMAM_URL = "https://api.edamam.com/api/nutrition-data"


def _qty(tot: dict, key: str) -> float:
    return float(tot.get(key, {}).get("quantity", 0) or 0)


class EdamamLookup:
    def __init__(
        self,
        app_id: str | None = None,
        app_key: str | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float = 15,
    ) -> None:
        self._id = app_id if app_id is not None else settings.edamam_app_id
        self._key = app_key if app_key is not None else settings.edamam_app_key
        self._client = client
        self._timeout = timeout

    async def lookup(self, ingredient_name: str) -> CompositionRecord | None:
        if not (self._id and self._key):
            raise LookupUnavailable("EDAMAM_* env vars not set")

        params = {"app_id": self._id, "app_key": self._key, "ingr": f"100 g {ingredient_name}"}
        try:
            if self._client is not None:
                r = await self._client.get(EDAMAM_URL, params=params)
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as http:
                    r = await http.get(EDAMAM_URL, params=params)
            r.raise_for_status()
            data = r.json()
        except (httpx.HTTPError, ValueError) as e:
            _LOG.error("Edamam lookup failed for %r: %s", ingredient_name, e)
            raise LookupUnavailable(f"Edamam lookup failed: {e}") from e

        tot = data.get("totalNutrients") or {}
        kcal = float(data.get("calories") or _qty(tot, "ENERC_KCAL"))
        if kcal <= 0 and not tot:
            return None
        return CompositionRecord(
            description=ingredient_name,
            calories=kcal,
            protein=_qty(tot, "PROCNT"),
            fat=_qty(tot, "FAT"),
            carbohydrates=_qty(tot, "CHOCDF"),
            fiber=_qty(tot, "FIBTG"),
        )
