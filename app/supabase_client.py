"""
Supabase REST (PostgREST) reads for members and points history.
"""
import logging
from typing import Any, Dict, List, Optional

import httpx

logger = logging.getLogger("supabase_client")


class SupabaseClient:
    """Read-only access to the members and points tables."""

    def __init__(self, http: httpx.AsyncClient, url: str, key: str):
        self._http = http
        self._rest_url = f"{url.rstrip('/')}/rest/v1"
        self._key = key

    def _get_headers(self) -> dict:
        return {
            "apikey": self._key,
            "Authorization": f"Bearer {self._key}",
            "Accept": "application/json",
        }

    async def _select(self, table: str, params: Dict[str, str]) -> List[Dict[str, Any]]:
        response = await self._http.get(
            f"{self._rest_url}/{table}",
            params=params,
            headers=self._get_headers(),
        )
        if response.is_error:
            logger.warning(f"Supabase error on {table}: {response.status_code} {response.text[:200]}")
        response.raise_for_status()
        return response.json()

    async def fetch_member(self, username: str) -> Optional[Dict[str, Any]]:
        """The member row for a GitHub username, or None."""
        rows = await self._select(
            "members",
            {"select": "*", "github_username": f"eq.{username}", "limit": "1"},
        )
        return rows[0] if rows else None

    async def fetch_points(self, member_id: str) -> List[Dict[str, Any]]:
        """Points history for a member, oldest first."""
        rows = await self._select(
            "points",
            {"select": "*", "member_id": f"eq.{member_id}", "order": "updated_at.asc"},
        )
        return rows or []
