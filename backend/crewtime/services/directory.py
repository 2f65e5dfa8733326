"""Read-only client for the external group/role directory.

HTTP contract (relative to DIRECTORY_API_URL):
    GET /groups/{group_id}/roles                 → [{"id", "rank", "name"}]
    GET /groups/{group_id}/members               → [{"userId", "roleId"}]
    GET /groups/{group_id}/users/{user_id}/rank  → {"rank"}

Every call uses a bounded httpx timeout.  Role lists are kept as a
last-known-good copy per group: when the directory is down the copy is
served instead.  With no copy available an ExternalDependencyError is
raised and the caller decides how to degrade (no rank gate, skip sync).
"""

import logging
from dataclasses import dataclass

import httpx

from crewtime.config import settings
from crewtime.middleware.exceptions import ExternalDependencyError

logger = logging.getLogger("crewtime.directory")


@dataclass(frozen=True)
class DirectoryRole:
    id: int
    rank: int
    name: str = ""


@dataclass(frozen=True)
class DirectoryMember:
    user_id: int
    role_id: int


class DirectoryClient:
    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.base_url = (base_url or settings.directory_api_url).rstrip("/")
        self.timeout = settings.directory_timeout_seconds if timeout is None else timeout
        self._client = http_client
        self._roles_cache: dict[int, list[DirectoryRole]] = {}

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self.timeout),
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _get_json(self, path: str):
        try:
            response = await self._http().get(path)
            response.raise_for_status()
            return response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Directory request failed: %s (%s)", path, e)
            raise ExternalDependencyError("directory", str(e) or e.__class__.__name__)

    # ── Roles ───────────────────────────────────────────────

    async def get_roles(self, group_id: int) -> list[DirectoryRole]:
        try:
            data = await self._get_json(f"/groups/{group_id}/roles")
        except ExternalDependencyError:
            cached = self._roles_cache.get(group_id)
            if cached is not None:
                logger.info("Serving last-known-good roles for group %s", group_id)
                return cached
            raise

        roles = [
            DirectoryRole(id=int(r["id"]), rank=int(r["rank"]), name=r.get("name", ""))
            for r in data
        ]
        self._roles_cache[group_id] = roles
        return roles

    async def get_rank_map(self, group_id: int) -> dict[int, int]:
        """role id → numeric rank."""
        return {role.id: role.rank for role in await self.get_roles(group_id)}

    # ── Members ─────────────────────────────────────────────

    async def get_members(self, group_id: int) -> list[DirectoryMember]:
        data = await self._get_json(f"/groups/{group_id}/members")
        return [
            DirectoryMember(user_id=int(m["userId"]), role_id=int(m["roleId"]))
            for m in data
        ]

    async def get_user_rank(self, group_id: int, user_id: int) -> int:
        """Numeric rank of a user in the group; 0 when not in the group."""
        data = await self._get_json(f"/groups/{group_id}/users/{user_id}/rank")
        return int(data.get("rank") or 0)


# ── Dependency ──────────────────────────────────────────────

_directory: DirectoryClient | None = None


def get_directory() -> DirectoryClient:
    """Shared client (overridden in tests)."""
    global _directory
    if _directory is None:
        _directory = DirectoryClient()
    return _directory


async def close_directory() -> None:
    global _directory
    if _directory is not None:
        await _directory.aclose()
        _directory = None
