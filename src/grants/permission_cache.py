"""
Permission Cache.

Resolves, once per batch, every distinct container referenced by the slice:
container handle, its authorized principals, and each child's authorized
principals. The batch executor then answers "already has access" with a
local lookup and only calls the remote store to grant.

Failure handling:
- RateLimitError on any container (or one of its children) marks that
  container rate-limited and stops resolving the rest of the call; the
  remaining containers are tagged rate-limited too. Already-resolved
  snapshots are kept.
- RemoteOperationError looking up a container is recorded on that container
  only.
- RemoteOperationError reading a container's own principals keeps the
  container with its principals unknown; its children are still resolved.
- RemoteOperationError on a child marks the child, not the container.

Snapshots are never reused across batches: remote state may have changed and
the next invocation runs in a fresh process anyway.
"""

import logging
import time
from typing import Callable, Iterable

from src.adapters.base import ObjectStore

from .entities import ChildPermissionSnapshot, ContainerPermissionSnapshot
from .errors import RateLimitError, RemoteOperationError


logger = logging.getLogger(__name__)


# Fixed pauses bounding burst rate against the object store
DEFAULT_CONTAINER_PAUSE_SECONDS = 1.0
DEFAULT_CHILD_PAUSE_SECONDS = 0.2


class PermissionCache:
    """In-memory map from container identifier to its permission snapshot."""

    def __init__(
        self,
        object_store: ObjectStore,
        container_pause_seconds: float = DEFAULT_CONTAINER_PAUSE_SECONDS,
        child_pause_seconds: float = DEFAULT_CHILD_PAUSE_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Args:
            object_store: ObjectStore to resolve against
            container_pause_seconds: Pause between successive containers
            child_pause_seconds: Pause between children of one container
            sleep: Injectable sleep function (tests pass a no-op)
        """
        self.object_store = object_store
        self.container_pause_seconds = container_pause_seconds
        self.child_pause_seconds = child_pause_seconds
        self._sleep = sleep
        self._snapshots: dict[str, ContainerPermissionSnapshot] = {}

    def seed(self, snapshot: ContainerPermissionSnapshot) -> None:
        """Insert a snapshot directly (pre-resolved state)."""
        self._snapshots[snapshot.container_id] = snapshot

    def resolve_batch(self, container_ids: Iterable[str]) -> dict[str, ContainerPermissionSnapshot]:
        """
        Resolve every container not yet in the cache.

        Never raises for remote failures; callers check `resolution_failed`
        on each snapshot.

        Returns:
            Snapshot for every requested identifier
        """
        requested = list(dict.fromkeys(container_ids))
        unresolved = [cid for cid in requested if cid not in self._snapshots]

        resolved_count = 0
        for index, container_id in enumerate(unresolved):
            if index > 0 and self.container_pause_seconds:
                self._sleep(self.container_pause_seconds)

            try:
                snapshot = self._resolve_container(container_id)
                resolved_count += 1
            except RateLimitError as e:
                logger.warning(
                    f"Rate limit while resolving container {container_id}; "
                    f"deferring {len(unresolved) - index} container(s): {e}"
                )
                for remaining_id in unresolved[index:]:
                    self._snapshots[remaining_id] = ContainerPermissionSnapshot.failed(
                        remaining_id,
                        error=f"Rate limited: {e}",
                        rate_limited=True,
                    )
                break
            except RemoteOperationError as e:
                logger.warning(f"Could not resolve container {container_id}: {e}")
                snapshot = ContainerPermissionSnapshot.failed(container_id, error=str(e))

            self._snapshots[container_id] = snapshot

        logger.info(
            f"Resolved {resolved_count}/{len(unresolved)} container(s) "
            f"({len(requested) - len(unresolved)} already cached)"
        )

        return {cid: self._snapshots[cid] for cid in requested}

    def _resolve_container(self, container_id: str) -> ContainerPermissionSnapshot:
        """Fetch container, its principals, and each child's principals."""
        handle = self.object_store.get_container(container_id)
        principals_unknown = False
        try:
            principals = {p.lower() for p in self.object_store.get_authorized_principals(handle)}
        except RemoteOperationError as e:
            logger.warning(f"Could not read principals of container {container_id}: {e}")
            principals = set()
            principals_unknown = True

        children = []
        for index, child_handle in enumerate(self.object_store.list_children(handle)):
            if index > 0 and self.child_pause_seconds:
                self._sleep(self.child_pause_seconds)

            try:
                child_principals = {
                    p.lower() for p in self.object_store.get_authorized_principals(child_handle)
                }
                children.append(ChildPermissionSnapshot(
                    handle=child_handle,
                    authorized_principals=child_principals,
                    name=child_handle.name,
                ))
            except RemoteOperationError as e:
                logger.warning(
                    f"Could not resolve child {child_handle.name or child_handle.resource_id} "
                    f"of container {container_id}: {e}"
                )
                children.append(ChildPermissionSnapshot(
                    handle=child_handle,
                    name=child_handle.name,
                    resolution_failed=True,
                ))

        return ContainerPermissionSnapshot(
            container_id=container_id,
            handle=handle,
            authorized_principals=principals,
            children=children,
            principals_unknown=principals_unknown,
        )
