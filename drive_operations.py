"""
Drive operations module: the remote tree capability used by the copy engine
"""
import logging
from typing import Dict, List, Optional, Tuple
from googleapiclient.errors import HttpError
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from job_state import Grant, MimeType, Node, Owner

logger = logging.getLogger(__name__)

NODE_FIELDS = 'id,name,mimeType,parents,description,owners(emailAddress,me),size'
GRANT_FIELDS = 'id,type,role,emailAddress,domain,allowFileDiscovery'

transient_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=10),
    retry=retry_if_exception_type((HttpError, ConnectionError)),
    reraise=True
)


def node_from_api(data: Dict) -> Node:
    """Convert a Drive v3 file resource to a Node"""
    size = data.get('size')
    return Node(
        id=data['id'],
        title=data.get('name', ''),
        mime_type=data.get('mimeType', ''),
        parents=list(data.get('parents', [])),
        description=data.get('description') or '',
        owners=[
            Owner(email=o.get('emailAddress', ''), is_me=bool(o.get('me', False)))
            for o in data.get('owners', [])
        ],
        size_bytes=int(size) if size is not None else None,
    )


def grant_from_api(data: Dict) -> Grant:
    """Convert a Drive v3 permission resource to a Grant"""
    return Grant(
        id=data.get('id'),
        role=data.get('role', 'reader'),
        type=data.get('type', 'user'),
        email=data.get('emailAddress'),
        domain=data.get('domain'),
        with_link=not data.get('allowFileDiscovery', True),
    )


def grant_to_api(grant: Grant) -> Dict:
    """Permission body for a create request"""
    body = {'role': grant.role, 'type': grant.type}
    if grant.email:
        body['emailAddress'] = grant.email
    elif grant.type == 'domain' and grant.domain:
        body['domain'] = grant.domain
    if grant.type in ('domain', 'anyone'):
        body['allowFileDiscovery'] = not grant.with_link
    return body


class DriveOperations:
    """Handles Drive API operations"""

    def __init__(self, drive_service, page_size: int = 1000):
        """
        Initialize Drive operations

        Args:
            drive_service: Authenticated Drive API service
            page_size: Number of children requested per listing page
        """
        self.drive = drive_service
        self.page_size = page_size

    @transient_retry
    def list_children(self, folder_id: str,
                      page_cursor: Optional[str] = None) -> Tuple[List[Node], Optional[str]]:
        """
        List one page of a folder's children

        Args:
            folder_id: Folder ID
            page_cursor: Token of the page to fetch, None for the first page

        Returns:
            Tuple of (nodes, next page token or None)
        """
        logger.debug(f"Listing children of {folder_id} (cursor: {page_cursor})")
        response = self.drive.files().list(
            q=f"'{folder_id}' in parents and trashed=false",
            pageSize=self.page_size,
            pageToken=page_cursor,
            fields=f'nextPageToken,files({NODE_FIELDS})',
            supportsAllDrives=True,
            includeItemsFromAllDrives=True
        ).execute()

        nodes = [node_from_api(f) for f in response.get('files', [])]
        logger.debug(f"Retrieved {len(nodes)} children of {folder_id}")
        return nodes, response.get('nextPageToken')

    @transient_retry
    def get_node(self, node_id: str) -> Node:
        """Get metadata for a single node"""
        data = self.drive.files().get(
            fileId=node_id,
            fields=NODE_FIELDS,
            supportsAllDrives=True
        ).execute()
        return node_from_api(data)

    @transient_retry
    def get_root_id(self) -> str:
        """ID of the acting user's My Drive root"""
        return self.drive.files().get(fileId='root', fields='id').execute()['id']

    @transient_retry
    def get_acting_email(self) -> Optional[str]:
        about = self.drive.about().get(fields='user(emailAddress)').execute()
        return about.get('user', {}).get('emailAddress')

    @transient_retry
    def create_folder(self, parent_id: str, title: str, description: str = '') -> Node:
        """
        Create a folder in Drive

        Args:
            parent_id: Parent folder ID
            title: Folder name
            description: Folder description

        Returns:
            Created folder node
        """
        body = {
            'name': title,
            'mimeType': MimeType.FOLDER,
            'parents': [parent_id],
            'description': description or '',
        }
        folder = self.drive.files().create(
            body=body,
            fields=NODE_FIELDS,
            supportsAllDrives=True
        ).execute()

        logger.info(f"Created folder: {title} (ID: {folder.get('id')})")
        return node_from_api(folder)

    @transient_retry
    def copy_node(self, parent_id: str, title: str, description: str, source_id: str) -> Node:
        """
        Copy a file within Drive

        Args:
            parent_id: Destination parent folder ID
            title: Name of the copy
            description: Description of the copy
            source_id: Source file ID

        Returns:
            Copied file node
        """
        copied = self.drive.files().copy(
            fileId=source_id,
            body={'name': title, 'parents': [parent_id], 'description': description or ''},
            fields=NODE_FIELDS,
            supportsAllDrives=True
        ).execute()

        logger.info(f"Copied file: {title} (ID: {copied.get('id')})")
        return node_from_api(copied)

    @transient_retry
    def create_shortcut(self, parent_id: str, title: str, description: str, target_id: str) -> Node:
        """Create a shortcut pointing at target_id"""
        body = {
            'name': title,
            'mimeType': MimeType.SHORTCUT,
            'parents': [parent_id],
            'description': description or '',
            'shortcutDetails': {'targetId': target_id},
        }
        shortcut = self.drive.files().create(
            body=body,
            fields=NODE_FIELDS,
            supportsAllDrives=True
        ).execute()

        logger.info(f"Created shortcut: {title} -> {target_id}")
        return node_from_api(shortcut)

    @transient_retry
    def resolve_shortcut(self, node_id: str) -> Dict[str, str]:
        """
        Resolve a shortcut to its target

        Returns:
            Dictionary with targetId and targetMimeType
        """
        data = self.drive.files().get(
            fileId=node_id,
            fields='shortcutDetails(targetId,targetMimeType)',
            supportsAllDrives=True
        ).execute()
        details = data.get('shortcutDetails', {})
        return {
            'targetId': details['targetId'],
            'targetMimeType': details.get('targetMimeType', ''),
        }

    @transient_retry
    def list_grants(self, node_id: str) -> List[Grant]:
        """List all sharing grants on a node"""
        grants = []
        page_token = None

        while True:
            response = self.drive.permissions().list(
                fileId=node_id,
                pageToken=page_token,
                fields=f'nextPageToken,permissions({GRANT_FIELDS})',
                supportsAllDrives=True
            ).execute()

            grants.extend(grant_from_api(p) for p in response.get('permissions', []))

            page_token = response.get('nextPageToken')
            if not page_token:
                break

        return grants

    @transient_retry
    def add_grant(self, node_id: str, grant: Grant, notify: bool = False) -> Optional[str]:
        """
        Add a sharing grant. An owner grant transfers ownership.

        Returns:
            Created permission ID
        """
        transfer = grant.role == 'owner'
        result = self.drive.permissions().create(
            fileId=node_id,
            body=grant_to_api(grant),
            sendNotificationEmail=notify or transfer,
            transferOwnership=transfer,
            supportsAllDrives=True,
            fields='id'
        ).execute()
        return result.get('id')

    @transient_retry
    def remove_grant(self, node_id: str, grant_id: str):
        self.drive.permissions().delete(
            fileId=node_id,
            permissionId=grant_id,
            supportsAllDrives=True
        ).execute()

    @transient_retry
    def create_marker(self, parent_id: str, title: str, description: str = '') -> Node:
        """Create a blank plain-text document used for job bookkeeping"""
        body = {
            'name': title,
            'mimeType': MimeType.PLAINTEXT,
            'parents': [parent_id],
            'description': description,
        }
        marker = self.drive.files().create(
            body=body,
            fields=NODE_FIELDS,
            supportsAllDrives=True
        ).execute()
        return node_from_api(marker)

    @transient_retry
    def find_children(self, folder_id: str, title_contains: str,
                      mime_type: Optional[str] = None) -> List[Node]:
        """Children of folder_id whose name contains title_contains, newest first"""
        escaped = title_contains.replace("\\", "\\\\").replace("'", "\\'")
        query = f"'{folder_id}' in parents and trashed=false and name contains '{escaped}'"
        if mime_type:
            query = f"{query} and mimeType='{mime_type}'"

        response = self.drive.files().list(
            q=query,
            orderBy='modifiedTime desc',
            fields=f'files({NODE_FIELDS})',
            supportsAllDrives=True,
            includeItemsFromAllDrives=True
        ).execute()
        return [node_from_api(f) for f in response.get('files', [])]

    def delete_node(self, node_id: str) -> bool:
        """
        Delete a node

        Returns:
            True if successful, False otherwise
        """
        try:
            self.drive.files().delete(fileId=node_id, supportsAllDrives=True).execute()
            return True
        except HttpError as e:
            logger.warning(f"Could not delete {node_id}: {e}")
            return False
