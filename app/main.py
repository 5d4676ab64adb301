"""
Leaderboard Cache - FastAPI application
Member, points and GitHub commit data served through a stale-while-revalidate cache
"""
import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional, Dict, Any

import httpx
from dotenv import load_dotenv
from fastapi import Depends, FastAPI, HTTPException, Query, Request

from app.cache import (
    CacheRegistry,
    InvalidKeyError,
    TooManyKeysError,
    UnknownNamespaceError,
    UpstreamFetchError,
)
from app.github_client import GitHubClient
from app.leaderboard import LeaderboardData
from app.supabase_client import SupabaseClient
from config.settings import Settings, settings as default_settings

load_dotenv()

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("main")

APP_VERSION = "v0.3.0"
APP_NAME = "Leaderboard Cache"


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def create_app(app_settings: Optional[Settings] = None) -> FastAPI:
    """
    Build the application with its own cache registry and HTTP client.
    """
    app_settings = app_settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        http = httpx.AsyncClient(timeout=app_settings.http_timeout_seconds)
        registry = CacheRegistry.from_settings(app_settings)
        supabase = None
        if app_settings.supabase_url and app_settings.supabase_key:
            supabase = SupabaseClient(http, app_settings.supabase_url, app_settings.supabase_key)
        else:
            logger.warning("Supabase not configured - member and points lookups will fail")
        github = GitHubClient(
            http,
            token=app_settings.github_token,
            base_url=app_settings.github_api_url,
            window_days=app_settings.github_commit_window_days,
        )
        app.state.leaderboard = LeaderboardData(registry, github, supabase)
        logger.info(f"Cache namespaces ready: {', '.join(registry.namespaces)}")
        try:
            yield
        finally:
            await registry.drain()
            await http.aclose()

    app = FastAPI(
        title=APP_NAME,
        description="SWR-cached leaderboard data",
        version=APP_VERSION,
        lifespan=lifespan,
    )
    app.state.settings = app_settings
    _register_routes(app)
    return app


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_leaderboard(request: Request) -> LeaderboardData:
    return request.app.state.leaderboard


def require_non_production(app_settings: Settings = Depends(get_settings)) -> Settings:
    """Diagnostics routes are only available outside production."""
    if app_settings.is_production:
        raise HTTPException(status_code=403, detail="Only available outside production")
    return app_settings


def _register_routes(app: FastAPI) -> None:

    @app.get("/health")
    def health_check():
        """Health check endpoint."""
        return {"status": "ok", "version": APP_VERSION}

    @app.get("/api/github-commits")
    async def github_commits(
        username: Optional[str] = Query(default=None, description="Single GitHub username"),
        usernames: Optional[str] = Query(default=None, description="Comma separated usernames"),
        data: LeaderboardData = Depends(get_leaderboard),
    ) -> Dict[str, Any]:
        """
        Recent commit counts for one user or a batch of users.
        """
        if username:
            try:
                commits = await data.get_commits(username)
            except InvalidKeyError as e:
                raise HTTPException(status_code=400, detail=str(e))
            except UpstreamFetchError as e:
                logger.error(f"GitHub commits lookup failed: {e}")
                raise HTTPException(status_code=502, detail="Failed to fetch GitHub commits")
            return {
                "success": True,
                "data": {username: commits},
                "timestamp": _timestamp(),
            }

        if usernames is not None:
            username_list = [u.strip() for u in usernames.split(",") if u.strip()]
            if not username_list:
                raise HTTPException(status_code=400, detail="No valid usernames provided")
            try:
                results = await data.batch_commits(username_list)
            except TooManyKeysError as e:
                raise HTTPException(
                    status_code=400, detail=f"Too many usernames (max {e.limit})"
                )

            commits_data = {key: r.value for key, r in results.items() if r.ok}
            errors = {key: str(r.error) for key, r in results.items() if not r.ok}
            return {
                "success": True,
                "data": commits_data,
                "errors": errors,
                "timestamp": _timestamp(),
                "count": len(commits_data),
            }

        raise HTTPException(status_code=400, detail="Username or usernames parameter required")

    @app.get("/api/cache-stats")
    def cache_stats(
        namespace: Optional[str] = Query(default=None),
        _: Settings = Depends(require_non_production),
        data: LeaderboardData = Depends(get_leaderboard),
    ) -> Dict[str, Any]:
        """Get cache statistics."""
        try:
            stats = data.registry.stats(namespace)
        except UnknownNamespaceError as e:
            raise HTTPException(status_code=404, detail=str(e))
        return {
            "message": "SWR Cache Statistics",
            "timestamp": _timestamp(),
            **stats,
        }

    @app.post("/api/cache/prune")
    def prune_cache(
        _: Settings = Depends(require_non_production),
        data: LeaderboardData = Depends(get_leaderboard),
    ) -> Dict[str, Any]:
        """Drop expired entries from every namespace."""
        removed = data.registry.prune()
        return {"removed": removed, "timestamp": _timestamp()}

    @app.get("/api/swr-test")
    async def swr_test(
        action: str = Query(default="get"),
        username: str = Query(default="demo-user"),
        member_id: int = Query(default=1, alias="memberId"),
        _: Settings = Depends(require_non_production),
        data: LeaderboardData = Depends(get_leaderboard),
    ) -> Dict[str, Any]:
        """
        Exercise the member and points caches by hand.

        Actions: get-member, get-points, revalidate-member, revalidate-points.
        Anything else reads both.
        """
        result: Dict[str, Any] = {}
        start = time.perf_counter()

        try:
            if action == "get-member":
                result["member"] = await data.get_member(username)
            elif action == "get-points":
                result["points"] = await data.get_points(member_id)
            elif action == "revalidate-member":
                result["member"] = await data.revalidate_member(username)
                result["forced"] = True
            elif action == "revalidate-points":
                result["points"] = await data.revalidate_points(member_id)
                result["forced"] = True
            else:
                result["member"] = await data.get_member(username)
                result["points"] = await data.get_points(member_id)
        except (InvalidKeyError, UpstreamFetchError) as e:
            status = 400 if isinstance(e, InvalidKeyError) else 502
            raise HTTPException(status_code=status, detail=f"SWR test failed: {e}")

        elapsed_ms = (time.perf_counter() - start) * 1000
        return {
            "message": f"SWR Cache Test - {action}",
            "username": username,
            "memberId": member_id,
            "responseTime": f"{elapsed_ms:.0f}ms",
            "timestamp": _timestamp(),
            **result,
        }


app = create_app()
