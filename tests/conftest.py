import copy
import itertools
import os
import tempfile

import pytest

os.environ.setdefault('REPORT_DIR', tempfile.mkdtemp(prefix='tree_copy_reports_'))

from budget_tracker import BudgetTracker, PERSONAL_PROFILE  # noqa: E402
from config import Config  # noqa: E402
from job_state import Grant, MimeType, Node, Owner  # noqa: E402

ME = 'me@example.com'
FILE = 'application/pdf'


class FakeDrive:
    """In-memory Drive implementing the remote tree client contract"""

    def __init__(self, page_size=100):
        self.nodes = {}
        self.shortcut_targets = {}
        self.grants = {}
        self.failures = {}
        self.calls = []
        self.page_size = page_size
        self._ids = itertools.count(1)
        self.add('root', 'My Drive', MimeType.FOLDER, parent=None)

    # -- test helpers ---------------------------------------------------

    def add(self, node_id, title, mime_type=FILE, parent='root', owner=ME,
            size=None, target=None, parents=None):
        if parents is None:
            parents = [parent] if parent else []
        node = Node(
            id=node_id,
            title=title,
            mime_type=mime_type,
            parents=list(parents),
            owners=[Owner(email=owner, is_me=owner == ME)],
            size_bytes=size,
        )
        self.nodes[node_id] = node
        self.grants[node_id] = [Grant(id=f'perm-{owner}', role='owner', type='user', email=owner)]
        if target:
            self.shortcut_targets[node_id] = target
        return node

    def fail(self, method, node_id, times=1):
        self.failures[(method, node_id)] = times

    def calls_to(self, method):
        return [args for name, args in self.calls if name == method]

    def children_of(self, folder_id):
        return [n for n in self.nodes.values() if folder_id in n.parents]

    def _record(self, method, *args):
        self.calls.append((method, args))
        key = (method, args[0] if args else None)
        remaining = self.failures.get(key, 0)
        if remaining:
            self.failures[key] = remaining - 1
            raise ConnectionError(f"{method} failed for {args[0]}")

    def _new(self, prefix, title, mime_type, parent_id, description='', size=None):
        if parent_id not in self.nodes:
            raise LookupError(f"Parent {parent_id} does not exist")
        node_id = f'{prefix}{next(self._ids)}'
        node = Node(
            id=node_id,
            title=title,
            mime_type=mime_type,
            parents=[parent_id],
            description=description,
            owners=[Owner(email=ME, is_me=True)],
            size_bytes=size,
        )
        self.nodes[node_id] = node
        self.grants[node_id] = [Grant(id=f'perm-{ME}', role='owner', type='user', email=ME)]
        return copy.deepcopy(node)

    # -- client contract ------------------------------------------------

    def list_children(self, folder_id, page_cursor=None):
        self._record('list_children', folder_id, page_cursor)
        children = self.children_of(folder_id)
        start = int(page_cursor or 0)
        end = start + self.page_size
        next_cursor = str(end) if end < len(children) else None
        return copy.deepcopy(children[start:end]), next_cursor

    def get_node(self, node_id):
        self._record('get_node', node_id)
        return copy.deepcopy(self.nodes[node_id])

    def get_root_id(self):
        return 'root'

    def create_folder(self, parent_id, title, description=''):
        self._record('create_folder', parent_id, title, description)
        return self._new('folder', title, MimeType.FOLDER, parent_id, description)

    def copy_node(self, parent_id, title, description, source_id):
        self._record('copy_node', source_id, parent_id, title)
        source = self.nodes[source_id]
        return self._new('copy', title, source.mime_type, parent_id, description, source.size_bytes)

    def create_shortcut(self, parent_id, title, description, target_id):
        self._record('create_shortcut', target_id, parent_id, title)
        node = self._new('shortcut', title, MimeType.SHORTCUT, parent_id, description)
        self.shortcut_targets[node.id] = target_id
        return node

    def resolve_shortcut(self, node_id):
        self._record('resolve_shortcut', node_id)
        target_id = self.shortcut_targets[node_id]
        return {'targetId': target_id, 'targetMimeType': self.nodes[target_id].mime_type}

    def list_grants(self, node_id):
        self._record('list_grants', node_id)
        return copy.deepcopy(self.grants.get(node_id, []))

    def add_grant(self, node_id, grant, notify=False):
        self._record('add_grant', node_id, grant)
        if grant.email:
            grant_id = f'perm-{grant.email}'
        else:
            grant_id = grant.id or f'perm{next(self._ids)}'
        stored = Grant(id=grant_id, role=grant.role, type=grant.type, email=grant.email,
                       domain=grant.domain, with_link=grant.with_link)
        grants = self.grants.setdefault(node_id, [])

        # owners cannot be downgraded by a plain grant
        if any(g.id == grant_id and g.role == 'owner' for g in grants) and grant.role != 'owner':
            return grant_id

        if grant.role == 'owner':
            for existing in grants:
                if existing.role == 'owner':
                    existing.role = 'writer'
            self.nodes[node_id].owners = [Owner(email=grant.email, is_me=grant.email == ME)]

        grants[:] = [g for g in grants if g.id != grant_id]
        grants.append(stored)
        return grant_id

    def remove_grant(self, node_id, grant_id):
        self._record('remove_grant', node_id, grant_id)
        self.grants[node_id] = [g for g in self.grants[node_id] if g.id != grant_id]

    def create_marker(self, parent_id, title, description=''):
        self._record('create_marker', parent_id, title)
        return self._new('marker', title, MimeType.PLAINTEXT, parent_id, description)

    def find_children(self, folder_id, title_contains, mime_type=None):
        return [
            copy.deepcopy(n) for n in self.children_of(folder_id)
            if title_contains in n.title and (mime_type is None or n.mime_type == mime_type)
        ]

    def delete_node(self, node_id):
        self._record('delete_node', node_id)
        return self.nodes.pop(node_id, None) is not None


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class ItemBudget(BudgetTracker):
    """Budget that runs out after a fixed number of items per slice"""

    def __init__(self, max_items=None, stop_after=None, profile=PERSONAL_PROFILE):
        self.items = 0
        self.max_items = max_items
        self.stop_after = stop_after
        super().__init__(
            profile,
            stop_requested=lambda: self.stop_after is not None and self.items >= self.stop_after,
            clock=FakeClock()
        )

    def start(self):
        super().start()
        self.items = 0

    def can_continue(self):
        if self.max_items is not None and self.items >= self.max_items:
            self.time_is_up = True
            return False
        return super().can_continue()

    def item_done(self, item=None, result=None):
        self.items += 1


class RecordingLog:
    """Progress log sink that keeps entries in memory"""

    def __init__(self):
        self.entries = []
        self.statuses = []

    def write(self, entry):
        self.entries.append(entry)

    def log_status(self, message):
        self.statuses.append(message)

    def with_status(self, status):
        return [e for e in self.entries if e.status == status]

    @property
    def errors(self):
        return [e for e in self.entries if e.is_error]


def make_config(**overrides):
    attrs = {
        'MAX_ATTEMPTS': 3,
        'SKIP_DUPLICATE_ID': True,
        'CREATE_SHORTCUTS_WHEN_DUPLICATE': True,
        'CREATE_SHORTCUT_COPIES': True,
        'REPLACE_DESCRIPTION_WITH_ORIGINAL_LINK': False,
    }
    attrs.update(overrides)
    return type('TestConfig', (Config,), attrs)


@pytest.fixture
def drive():
    return FakeDrive()


@pytest.fixture
def progress():
    return RecordingLog()


@pytest.fixture
def budget():
    return ItemBudget()
