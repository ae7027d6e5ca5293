"""
Job state model for resumable folder copy and owner change jobs

A job is described by a single JobState record that is saved after every
processed item and reloaded verbatim on the next invocation.
"""
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional
from zoneinfo import ZoneInfo


class MimeType:
    """Drive MIME types the engine cares about"""

    FOLDER = 'application/vnd.google-apps.folder'
    SHORTCUT = 'application/vnd.google-apps.shortcut'
    DOC = 'application/vnd.google-apps.document'
    DRAWING = 'application/vnd.google-apps.drawing'
    FORM = 'application/vnd.google-apps.form'
    SCRIPT = 'application/vnd.google-apps.script'
    SHEET = 'application/vnd.google-apps.spreadsheet'
    SLIDES = 'application/vnd.google-apps.presentation'
    PLAINTEXT = 'text/plain'

    # kinds that carry their own sharing grants worth replicating
    NATIVE = (DOC, DRAWING, FOLDER, FORM, SCRIPT, SHEET, SLIDES)


class JobKind:
    COPY = 'copy'
    CHANGE_OWNER = 'change_owner'


@dataclass
class Owner:
    email: str
    is_me: bool = False

    def to_dict(self) -> Dict:
        return {'email': self.email, 'is_me': self.is_me}

    @classmethod
    def from_dict(cls, data: Dict) -> 'Owner':
        return cls(email=data.get('email', ''), is_me=bool(data.get('is_me', False)))


@dataclass
class Grant:
    """A sharing grant on a node"""

    role: str
    type: str = 'user'
    id: Optional[str] = None
    email: Optional[str] = None
    domain: Optional[str] = None
    with_link: bool = False

    def to_dict(self) -> Dict:
        return {
            'id': self.id,
            'role': self.role,
            'type': self.type,
            'email': self.email,
            'domain': self.domain,
            'with_link': self.with_link,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> 'Grant':
        return cls(
            id=data.get('id'),
            role=data['role'],
            type=data.get('type', 'user'),
            email=data.get('email'),
            domain=data.get('domain'),
            with_link=bool(data.get('with_link', False)),
        )


@dataclass
class Node:
    """
    One file, folder or shortcut from the source tree.

    The same type travels through the leftover page and the retry queue;
    `attempt` and `error` are only set once an item has failed.
    """

    id: str
    title: str
    mime_type: str
    parents: List[str] = field(default_factory=list)
    description: str = ''
    owners: List[Owner] = field(default_factory=list)
    size_bytes: Optional[int] = None
    attempt: int = 0
    error: Optional[str] = None

    @property
    def is_folder(self) -> bool:
        return self.mime_type == MimeType.FOLDER

    @property
    def is_shortcut(self) -> bool:
        return self.mime_type == MimeType.SHORTCUT

    @property
    def owned_by_me(self) -> bool:
        return bool(self.owners) and self.owners[0].is_me

    def failed(self, error: Exception) -> 'Node':
        """Copy of this node carrying the next attempt number and the error"""
        return Node(
            id=self.id,
            title=self.title,
            mime_type=self.mime_type,
            parents=list(self.parents),
            description=self.description,
            owners=list(self.owners),
            size_bytes=self.size_bytes,
            attempt=self.attempt + 1,
            error=str(error) or error.__class__.__name__,
        )

    def to_dict(self) -> Dict:
        return {
            'id': self.id,
            'title': self.title,
            'mime_type': self.mime_type,
            'parents': list(self.parents),
            'description': self.description,
            'owners': [o.to_dict() for o in self.owners],
            'size_bytes': self.size_bytes,
            'attempt': self.attempt,
            'error': self.error,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> 'Node':
        return cls(
            id=data['id'],
            title=data.get('title', ''),
            mime_type=data.get('mime_type', ''),
            parents=list(data.get('parents', [])),
            description=data.get('description') or '',
            owners=[Owner.from_dict(o) for o in data.get('owners', [])],
            size_bytes=data.get('size_bytes'),
            attempt=int(data.get('attempt', 0)),
            error=data.get('error'),
        )


@dataclass
class Page:
    """Most recent listing page of a folder that is not fully processed yet"""

    folder_id: Optional[str] = None
    items: List[Node] = field(default_factory=list)
    next_cursor: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not self.items and not self.next_cursor

    def to_dict(self) -> Dict:
        return {
            'folder_id': self.folder_id,
            'items': [i.to_dict() for i in self.items],
            'next_cursor': self.next_cursor,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict]) -> 'Page':
        if not data:
            return cls()
        return cls(
            folder_id=data.get('folder_id'),
            items=[Node.from_dict(i) for i in data.get('items', [])],
            next_cursor=data.get('next_cursor'),
        )


@dataclass
class Options:
    """User selections made when the job was started"""

    src_folder_id: str
    src_folder_name: str = ''
    src_parent_id: Optional[str] = None
    dest_folder_name: str = ''
    copy_to: str = 'same'  # same | custom | root
    dest_parent_id: Optional[str] = None
    copy_permissions: bool = False
    new_owner_email: Optional[str] = None
    follow_shortcuts: bool = False
    remove_permissions: bool = False

    def to_dict(self) -> Dict:
        return dict(self.__dict__)

    @classmethod
    def from_dict(cls, data: Dict) -> 'Options':
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        return cls(**known)


@dataclass
class RunMetadata:
    current_folder_id: Optional[str] = None
    timezone: str = 'UTC'
    log_sink: Optional[str] = None
    log_sink_id: Optional[str] = None
    state_doc_id: Optional[str] = None
    dest_folder_id: Optional[str] = None
    stop_requested: bool = False
    runtime_day: Optional[str] = None
    runtime_today_seconds: float = 0.0
    started_at: Optional[str] = None

    def record_runtime(self, seconds: float, today: str, daily_limit_seconds: float) -> bool:
        """
        Add one invocation's runtime to today's total

        Returns:
            True if the daily runtime ceiling has been reached
        """
        if self.runtime_day != today:
            self.runtime_day = today
            self.runtime_today_seconds = 0.0
        self.runtime_today_seconds += seconds
        return self.runtime_today_seconds >= daily_limit_seconds

    def daily_budget_exhausted(self, today: str, daily_limit_seconds: float) -> bool:
        if self.runtime_day != today:
            return False
        return self.runtime_today_seconds >= daily_limit_seconds

    def to_dict(self) -> Dict:
        return dict(self.__dict__)

    @classmethod
    def from_dict(cls, data: Optional[Dict]) -> 'RunMetadata':
        if not data:
            return cls()
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        return cls(**known)


@dataclass
class JobState:
    """The single persisted record driving a resumable job"""

    kind: str
    options: Options
    job_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    id_map: Dict[str, str] = field(default_factory=dict)
    pending_folders: List[str] = field(default_factory=list)
    completed: Dict[str, str] = field(default_factory=dict)
    retry_queue: List[Node] = field(default_factory=list)
    leftovers: Page = field(default_factory=Page)
    list_failures: Dict[str, int] = field(default_factory=dict)
    run_metadata: RunMetadata = field(default_factory=RunMetadata)

    def is_complete(self) -> bool:
        return not self.pending_folders and not self.retry_queue and self.leftovers.is_empty

    def mark_completed(self, source_id: str, dest_id: str) -> bool:
        """
        Record a materialized source id. Existing entries are never overwritten.

        Returns:
            True if the id was newly recorded
        """
        if source_id in self.completed:
            return False
        self.completed[source_id] = dest_id
        return True

    def map_folder(self, source_id: str, dest_id: str):
        if source_id in self.id_map:
            raise ValueError(f"Folder {source_id} already mapped to {self.id_map[source_id]}")
        self.id_map[source_id] = dest_id

    def enqueue_folder(self, folder_id: str):
        if folder_id not in self.pending_folders:
            self.pending_folders.append(folder_id)

    def push_retry(self, item: Node, error: Exception) -> Node:
        failed = item.failed(error)
        self.retry_queue.insert(0, failed)
        return failed

    def bookkeeping_ids(self) -> List[str]:
        return [i for i in (self.run_metadata.state_doc_id, self.run_metadata.log_sink_id) if i]

    def is_job_output(self, node_id: str) -> bool:
        """True for nodes this job created: copies, folders, shortcuts and bookkeeping docs"""
        if node_id == self.run_metadata.dest_folder_id or node_id in self.bookkeeping_ids():
            return True
        return node_id in self.id_map.values() or node_id in self.completed.values()

    def summary(self) -> Dict:
        return {
            'job_id': self.job_id,
            'kind': self.kind,
            'folders_mapped': len(self.id_map),
            'items_completed': len(self.completed),
            'pending_folders': len(self.pending_folders),
            'retry_queue': len(self.retry_queue),
            'leftover_items': len(self.leftovers.items),
            'complete': self.is_complete(),
        }

    def to_dict(self) -> Dict:
        return {
            'job_id': self.job_id,
            'kind': self.kind,
            'options': self.options.to_dict(),
            'id_map': dict(self.id_map),
            'pending_folders': list(self.pending_folders),
            'completed': dict(self.completed),
            'retry_queue': [i.to_dict() for i in self.retry_queue],
            'leftovers': self.leftovers.to_dict(),
            'list_failures': dict(self.list_failures),
            'run_metadata': self.run_metadata.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict) -> 'JobState':
        return cls(
            job_id=data['job_id'],
            kind=data['kind'],
            options=Options.from_dict(data['options']),
            id_map=dict(data.get('id_map', {})),
            pending_folders=list(data.get('pending_folders', [])),
            completed=dict(data.get('completed', {})),
            retry_queue=[Node.from_dict(i) for i in data.get('retry_queue', [])],
            leftovers=Page.from_dict(data.get('leftovers')),
            list_failures={k: int(v) for k, v in data.get('list_failures', {}).items()},
            run_metadata=RunMetadata.from_dict(data.get('run_metadata')),
        )


def today_in(timezone: str) -> str:
    """Current date in the job's timezone as YYYY-MM-DD"""
    return datetime.now(ZoneInfo(timezone)).strftime('%Y-%m-%d')
