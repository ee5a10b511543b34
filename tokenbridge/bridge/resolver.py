"""
Object State Resolver

Fetches the current (id, version, digest) of authority objects on the
object-model ledger immediately before each submission that touches them.

Concurrent bridge requests share the same TreasuryCap / MinterCap, and the
ledger enforces optimistic versioning on them. Resolving just-in-time and
retrying on staleness is the concurrency control. Refs are therefore never
cached here: every call goes to the node.
"""

import asyncio
from typing import Iterable, List

from .rpc import JsonRpcClient
from .types import ObjectRef
from ..exceptions import ObjectNotFound
from ..logger import get_logger

logger = get_logger(__name__)

_MISSING_OBJECT_CODES = {"notExists", "deleted", "dynamicFieldNotFound"}


class ObjectStateResolver:
    """Resolves object ids to fresh ObjectRefs via ``sui_getObject``."""

    def __init__(self, rpc: JsonRpcClient):
        self._rpc = rpc

    async def resolve(self, object_id: str) -> ObjectRef:
        """
        Fetch the current reference of ``object_id``.

        Raises:
            ObjectNotFound: the ledger reports no such (live) object
            LedgerUnavailable: transport failure (retryable)
        """
        result = await self._rpc.call(
            "sui_getObject",
            [object_id, {"showType": True, "showOwner": True}],
        )
        if not result:
            raise ObjectNotFound(f"Failed to fetch state for object ID: {object_id}")

        error = result.get("error")
        if error:
            code = error.get("code", "") if isinstance(error, dict) else str(error)
            if code in _MISSING_OBJECT_CODES:
                raise ObjectNotFound(f"Object {object_id} not found on ledger ({code})")
            raise ObjectNotFound(f"Object {object_id} unreadable: {error}")

        data = result.get("data")
        if not data or "version" not in data:
            raise ObjectNotFound(f"Failed to fetch state for object ID: {object_id}")

        ref = ObjectRef(
            object_id=data.get("objectId", object_id),
            version=int(data["version"]),
            digest=data.get("digest", ""),
        )
        logger.debug(f"Resolved {ref.object_id} at version {ref.version}")
        return ref

    async def resolve_all(self, object_ids: Iterable[str]) -> List[ObjectRef]:
        """Resolve several objects concurrently, preserving input order."""
        ids = list(object_ids)
        if not ids:
            return []
        return list(await asyncio.gather(*(self.resolve(oid) for oid in ids)))
