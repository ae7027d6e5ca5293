"""
Permissions replication module
Copies sharing grants from source to destination, strips grants and
transfers ownership. Every grant mutation is best-effort.
"""
import logging
from typing import Dict, List, Optional

from job_state import Grant, Owner

logger = logging.getLogger(__name__)


class PermissionsReplicator:
    """Handles replication and removal of file/folder sharing grants"""

    def __init__(self, client):
        """
        Initialize permissions replicator

        Args:
            client: Remote tree client (DriveOperations or compatible)
        """
        self.client = client

    def copy_permissions(self, source_id: str, dest_id: str,
                         owners: Optional[List[Owner]] = None) -> Dict:
        """
        Replicate grants from source to destination

        Args:
            source_id: Source node ID
            dest_id: Destination node ID
            owners: Previous owners of the source, granted writer access

        Returns:
            Result dictionary with migrated/failed/removed counts
        """
        result = {
            'total_permissions': 0,
            'migrated': 0,
            'failed': 0,
            'removed': 0,
        }

        try:
            source_grants = self.client.list_grants(source_id)
        except Exception as e:
            logger.warning(f"Could not read permissions of {source_id}: {e}")
            source_grants = None

        for grant in source_grants or []:
            result['total_permissions'] += 1

            # link-only sharing carries no email; re-grant it by id
            if grant.email:
                if grant.role == 'owner':
                    continue
                replica = Grant(role=grant.role, type=grant.type, email=grant.email)
            else:
                replica = Grant(
                    role=grant.role,
                    type=grant.type,
                    id=grant.id,
                    domain=grant.domain,
                    with_link=grant.with_link,
                )

            if self._add(dest_id, replica):
                result['migrated'] += 1
            else:
                result['failed'] += 1

        # old owners keep access as editors
        for owner in owners or []:
            if not owner.email:
                continue
            if self._add(dest_id, Grant(role='writer', type='user', email=owner.email)):
                result['migrated'] += 1
            else:
                result['failed'] += 1

        if source_grants is not None:
            result['removed'] = self._remove_inherited(dest_id, source_grants)

        logger.debug(f"Permissions {source_id} -> {dest_id}: "
                     f"{result['migrated']} migrated, {result['failed']} failed, "
                     f"{result['removed']} removed")
        return result

    def _add(self, node_id: str, grant: Grant) -> bool:
        try:
            self.client.add_grant(node_id, grant, notify=False)
            return True
        except Exception as e:
            logger.debug(f"Failed to add {grant.role} grant for "
                         f"{grant.email or grant.domain or grant.id} on {node_id}: {e}")
            return False

    def _remove_inherited(self, dest_id: str, source_grants: List[Grant]) -> int:
        """
        Remove destination grants that have no counterpart in the source.
        These were most likely inherited from the destination parent.
        """
        try:
            dest_grants = self.client.list_grants(dest_id)
        except Exception as e:
            logger.warning(f"Could not read permissions of {dest_id}: {e}")
            return 0

        source_ids = {g.id for g in source_grants if g.id}
        removed = 0

        for grant in dest_grants:
            if grant.role == 'owner' or grant.id in source_ids:
                continue
            try:
                self.client.remove_grant(dest_id, grant.id)
                removed += 1
            except Exception as e:
                logger.debug(f"Failed to remove grant {grant.id} from {dest_id}: {e}")

        return removed

    def remove_all_permissions(self, node_id: str) -> bool:
        """
        Remove every non-owner grant from a node

        Returns:
            True if the node had grants to process
        """
        try:
            grants = self.client.list_grants(node_id)
        except Exception as e:
            logger.warning(f"Could not read permissions of {node_id}: {e}")
            return False

        if not grants:
            return False

        for grant in grants:
            if grant.role == 'owner':
                continue
            try:
                self.client.remove_grant(node_id, grant.id)
            except Exception as e:
                logger.debug(f"Failed to remove grant {grant.id} from {node_id}: {e}")

        return True

    def change_owner(self, node_id: str, new_owner_email: str):
        """Transfer ownership of a node. Failures propagate to the caller."""
        self.client.add_grant(
            node_id,
            Grant(role='owner', type='user', email=new_owner_email),
            notify=False
        )
        logger.info(f"Transferred ownership of {node_id} to {new_owner_email}")
