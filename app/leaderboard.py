"""
Cached leaderboard data for route handlers.

Binds the upstream clients to their cache namespaces so routes only deal
with usernames and member ids.
"""
import logging
from typing import Any, Dict, Iterable, List, Optional

from app.cache import COMMITS, MEMBER, POINTS, CacheRegistry, KeyResult
from app.github_client import GitHubClient
from app.supabase_client import SupabaseClient

logger = logging.getLogger("leaderboard")


class UpstreamNotConfigured(RuntimeError):
    """An upstream client is needed but no credentials were configured."""


class LeaderboardData:
    """Member, points and commit lookups through the SWR cache."""

    def __init__(
        self,
        registry: CacheRegistry,
        github: GitHubClient,
        supabase: Optional[SupabaseClient] = None,
    ):
        self.registry = registry
        self.github = github
        self.supabase = supabase

    def _require_supabase(self) -> SupabaseClient:
        if self.supabase is None:
            logger.warning("Supabase lookup requested but no credentials configured")
            raise UpstreamNotConfigured("Supabase URL/key are not configured")
        return self.supabase

    async def _fetch_member(self, username: str) -> Optional[Dict[str, Any]]:
        return await self._require_supabase().fetch_member(username)

    async def _fetch_points(self, member_id: str) -> List[Dict[str, Any]]:
        return await self._require_supabase().fetch_points(member_id)

    async def _fetch_commits(self, username: str) -> int:
        return await self.github.fetch_commit_count(username)

    # ===== MEMBERS =====

    async def get_member(self, username: str) -> Optional[Dict[str, Any]]:
        return await self.registry.get(MEMBER, username, self._fetch_member)

    async def revalidate_member(self, username: str) -> Optional[Dict[str, Any]]:
        return await self.registry.revalidate(MEMBER, username, self._fetch_member)

    # ===== POINTS =====

    async def get_points(self, member_id: int) -> List[Dict[str, Any]]:
        return await self.registry.get(POINTS, str(member_id), self._fetch_points)

    async def revalidate_points(self, member_id: int) -> List[Dict[str, Any]]:
        return await self.registry.revalidate(POINTS, str(member_id), self._fetch_points)

    # ===== GITHUB COMMITS =====

    async def get_commits(self, username: str) -> int:
        return await self.registry.get(COMMITS, username, self._fetch_commits)

    async def batch_commits(self, usernames: Iterable[str]) -> Dict[str, KeyResult]:
        return await self.registry.batch_get(COMMITS, usernames, self._fetch_commits)
