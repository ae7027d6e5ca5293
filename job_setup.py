"""
Job initialization, resume lookup and completion
"""
import logging
import re
from collections import deque
from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional, Tuple
from zoneinfo import ZoneInfo

from errors import DescendantDestinationError, PriorStateNotFoundError
from job_state import JobKind, JobState, MimeType, Options, Page
from permissions_replicator import PermissionsReplicator

logger = logging.getLogger(__name__)

MARKER_PREFIX = 'DO NOT DELETE OR MODIFY'
COPY_MARKER_TITLE = MARKER_PREFIX + ' - will be deleted after operation completes [job:{job_id}]'
OWNER_MARKER_TITLE = MARKER_PREFIX + ' - NewOwner{{{{{email}}}}} [job:{job_id}]'
MARKER_DESCRIPTION = (
    'This document will be deleted after the folder copy/change owner is complete. '
    'It is only used to locate the saved state of the operation'
)

JOB_ID_PATTERN = re.compile(r'\[job:([0-9a-f]+)\]')
NEW_OWNER_PATTERN = re.compile(r'NewOwner\{\{(.+?)\}\}')


class JobSetup:
    """Creates, locates and finishes jobs"""

    def __init__(self, client, timezone: str = 'UTC', log_dir='reports'):
        """
        Initialize job setup

        Args:
            client: Remote tree client (DriveOperations or compatible)
            timezone: Timezone recorded on new jobs
            log_dir: Directory holding per-job CSV progress logs
        """
        self.client = client
        self.timezone = timezone
        self.log_dir = Path(log_dir)
        self.permissions = PermissionsReplicator(client)

    def is_descendant(self, maybe_child_ids: Iterable[str], maybe_parent_id: str) -> bool:
        """
        Determine whether any of maybe_child_ids is maybe_parent_id or lies
        beneath it, walking parent chains breadth-first.
        """
        queue = deque(maybe_child_ids)
        visited = set()

        while queue:
            node_id = queue.popleft()
            if node_id == maybe_parent_id:
                return True
            if node_id in visited:
                continue
            visited.add(node_id)

            parents = self.client.get_node(node_id).parents
            queue.extend(p for p in parents if p not in visited)

        return False

    def initialize_copy_job(self, options: Options) -> JobState:
        """
        Create the destination root folder and a fresh copy job

        Raises:
            DescendantDestinationError: destination lies inside the source
            ValueError: invalid destination selection
        """
        source = self.client.get_node(options.src_folder_id)
        options.src_folder_name = options.src_folder_name or source.title
        if not options.src_parent_id and source.parents:
            options.src_parent_id = source.parents[0]
        options.dest_folder_name = options.dest_folder_name or f"Copy of {options.src_folder_name}"

        if options.copy_to == 'same':
            dest_parent_id = options.src_parent_id or self.client.get_root_id()
        elif options.copy_to == 'custom':
            if not options.dest_parent_id:
                raise ValueError("A destination folder is required when copy_to is 'custom'")
            if self.is_descendant([options.dest_parent_id], options.src_folder_id):
                raise DescendantDestinationError(options.src_folder_id, options.dest_parent_id)
            dest_parent_id = options.dest_parent_id
        elif options.copy_to == 'root':
            dest_parent_id = self.client.get_root_id()
        else:
            raise ValueError(f"Unknown copy_to option: {options.copy_to}")

        today = self._now().strftime('%m-%d-%Y')
        dest_folder = self.client.create_folder(
            dest_parent_id,
            options.dest_folder_name,
            f"Copy of {options.src_folder_name}, created {today}"
        )
        logger.info(f"Created destination folder {dest_folder.title} ({dest_folder.id})")

        if options.copy_permissions:
            self.permissions.copy_permissions(options.src_folder_id, dest_folder.id)

        state = JobState(kind=JobKind.COPY, options=options)
        marker = self.client.create_marker(
            dest_folder.id,
            COPY_MARKER_TITLE.format(job_id=state.job_id),
            MARKER_DESCRIPTION
        )

        self._init_metadata(state, marker.id)
        state.run_metadata.dest_folder_id = dest_folder.id
        state.map_folder(options.src_folder_id, dest_folder.id)
        state.mark_completed(options.src_folder_id, dest_folder.id)
        state.pending_folders.append(options.src_folder_id)
        return state

    def initialize_owner_change_job(self, options: Options) -> JobState:
        """Create a fresh owner change job rooted at the selected folder"""
        if not options.new_owner_email and not options.remove_permissions:
            raise ValueError("Select a new owner, permission removal, or both")

        root = self.client.get_node(options.src_folder_id)
        options.src_folder_name = options.src_folder_name or root.title

        state = JobState(kind=JobKind.CHANGE_OWNER, options=options)
        marker = self.client.create_marker(
            options.src_folder_id,
            OWNER_MARKER_TITLE.format(email=options.new_owner_email or '', job_id=state.job_id),
            MARKER_DESCRIPTION
        )

        self._init_metadata(state, marker.id)
        # the selected folder is processed like any listed item
        state.leftovers = Page(
            folder_id=root.parents[0] if root.parents else None,
            items=[root]
        )
        return state

    def find_prior_job(self, folder_id: str) -> Tuple[str, Optional[str]]:
        """
        Locate the marker document of a job started on folder_id

        Returns:
            Tuple of (job_id, new owner email or None)

        Raises:
            PriorStateNotFoundError: no marker document in the folder
        """
        markers = self.client.find_children(folder_id, MARKER_PREFIX, MimeType.PLAINTEXT)

        for marker in markers:
            job_match = JOB_ID_PATTERN.search(marker.title)
            if not job_match:
                continue
            owner_match = NEW_OWNER_PATTERN.search(marker.title)
            new_owner = owner_match.group(1) if owner_match else None
            logger.info(f"Found prior job {job_match.group(1)} in folder {folder_id}")
            return job_match.group(1), new_owner

        raise PriorStateNotFoundError(folder_id, 'marker document not found')

    def finish_job(self, state: JobState):
        """Remove bookkeeping artifacts of a completed job"""
        marker_id = state.run_metadata.state_doc_id
        if marker_id and self.client.delete_node(marker_id):
            logger.info(f"Deleted marker document {marker_id}")

    def _init_metadata(self, state: JobState, marker_id: str):
        metadata = state.run_metadata
        metadata.timezone = self.timezone
        metadata.state_doc_id = marker_id
        metadata.started_at = self._now().isoformat()
        metadata.log_sink = str(self.log_dir / f"{state.kind}_log_{state.job_id}.csv")

    def _now(self) -> datetime:
        return datetime.now(ZoneInfo(self.timezone))
