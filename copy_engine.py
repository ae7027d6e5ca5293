"""
Core engine for resumable Drive folder copy and owner change

Each call to run_one_slice() performs one budget-bounded unit of work against
a JobState and leaves the state resumable wherever it stops.
"""
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from config import Config
from errors import UnmappedParentError
from job_state import JobKind, JobState, MimeType, Node, Page, today_in
from permissions_replicator import PermissionsReplicator
from progress_log import ItemStatus, LogEntry, RunMessage, original_link_description

logger = logging.getLogger(__name__)


class ResultKind:
    SUCCESS = 'success'
    SKIPPED = 'skipped'
    RETRY = 'retry'
    TERMINAL = 'terminal'


@dataclass
class ItemResult:
    """Outcome of the mutation step for one item"""

    kind: str
    entry: Optional[LogEntry] = None
    error: Optional[Exception] = None

    @classmethod
    def success(cls, entry: LogEntry) -> 'ItemResult':
        return cls(ResultKind.SUCCESS, entry=entry)

    @classmethod
    def skipped(cls) -> 'ItemResult':
        return cls(ResultKind.SKIPPED)

    @classmethod
    def retry(cls, error: Exception) -> 'ItemResult':
        return cls(ResultKind.RETRY, error=error)

    @classmethod
    def terminal(cls) -> 'ItemResult':
        return cls(ResultKind.TERMINAL)


class StopReason:
    COMPLETE = 'complete'
    TIME_UP = 'time_up'
    DAILY_LIMIT = 'daily_limit'
    USER_STOPPED = 'user_stopped'
    LIST_FAILED = 'list_failed'
    NOT_STARTED = 'not_started'


@dataclass
class SliceResult:
    state: JobState
    is_complete: bool
    next_delay_minutes: Optional[float]
    stop_reason: str
    stats: Dict[str, int] = field(default_factory=lambda: {'processed': 0, 'failed': 0, 'skipped': 0})


class TreeCopyEngine:
    """Traversal-and-mutation engine for copy and owner change jobs"""

    def __init__(self, client, budget, progress_log, config=Config,
                 checkpoint: Optional[Callable[[JobState], None]] = None,
                 on_item: Optional[Callable[[Node, ItemResult], None]] = None):
        """
        Initialize tree copy engine

        Args:
            client: Remote tree client (DriveOperations or compatible)
            budget: BudgetTracker polled after every item
            progress_log: Sink receiving one LogEntry per outcome
            config: Configuration object (attempt ceiling and feature flags)
            checkpoint: Called with the job state after every state change
            on_item: Called after every processed item
        """
        self.client = client
        self.budget = budget
        self.progress_log = progress_log
        self.config = config
        self.permissions = PermissionsReplicator(client)
        self.checkpoint = checkpoint
        self.on_item = on_item

    def run_one_slice(self, state: JobState) -> SliceResult:
        """
        Perform one bounded slice of work

        Args:
            state: Job state, mutated in place

        Returns:
            SliceResult with the updated state, completion flag and delay hint
        """
        self.budget.start()
        profile = self.budget.profile
        today = today_in(state.run_metadata.timezone)

        if state.is_complete():
            return SliceResult(state, True, None, StopReason.COMPLETE)

        # nothing below mutates state unless the slice actually starts
        exhausted = state.run_metadata.daily_budget_exhausted(today, profile.max_runtime_per_day)
        if exhausted or not self.budget.can_continue():
            if self.budget.stopped:
                return SliceResult(state, False, None, StopReason.USER_STOPPED)
            return SliceResult(state, False, self.budget.recommended_delay(exhausted),
                               StopReason.NOT_STARTED)

        logger.info(f"Starting slice for job {state.job_id} ({state.kind})")
        stats = {'processed': 0, 'failed': 0, 'skipped': 0}
        list_failed = False

        while not state.is_complete() and self.budget.can_continue():
            if state.leftovers.items:
                self._process_batch(state, state.leftovers.items, state.leftovers.folder_id, stats)
            elif state.leftovers.next_cursor:
                if not self._list_page(state, state.leftovers.folder_id, state.leftovers.next_cursor):
                    list_failed = True
                    break
            elif state.retry_queue:
                self._process_batch(state, state.retry_queue,
                                    _first_parent(state.retry_queue[0]), stats)
            else:
                folder_id = state.pending_folders.pop(0)
                if not self._list_page(state, folder_id, None):
                    list_failed = True
                    break

        exhausted = state.run_metadata.record_runtime(
            self.budget.elapsed(), today, profile.max_runtime_per_day
        )
        complete = state.is_complete()

        if complete:
            reason = StopReason.COMPLETE
            delay = None
            self.progress_log.log_status(RunMessage.COMPLETE)
        elif self.budget.stopped:
            reason = StopReason.USER_STOPPED
            delay = None
            state.run_metadata.stop_requested = True
            self.progress_log.log_status(RunMessage.USER_STOPPED)
        else:
            delay = self.budget.recommended_delay(exhausted)
            if exhausted:
                reason = StopReason.DAILY_LIMIT
                self.progress_log.log_status(RunMessage.MAX_RUNTIME_EXCEEDED)
            elif list_failed:
                reason = StopReason.LIST_FAILED
            else:
                reason = StopReason.TIME_UP
                self.progress_log.log_status(
                    RunMessage.SINGLE_RUN_EXCEEDED.format(minutes=int(delay))
                )

        self._checkpoint(state)
        logger.info(f"Slice finished for job {state.job_id}: {reason}, "
                    f"{stats['processed']} processed, {stats['failed']} failed")
        return SliceResult(state, complete, delay, reason, stats)

    def _list_page(self, state: JobState, folder_id: str, cursor: Optional[str]) -> bool:
        """
        Fetch one listing page into the leftover slot

        Returns:
            False if listing failed and the slice should end
        """
        state.run_metadata.current_folder_id = folder_id
        try:
            items, next_cursor = self.client.list_children(folder_id, cursor)
        except Exception as e:
            failures = state.list_failures.get(folder_id, 0) + 1
            logger.warning(f"Failed to list folder {folder_id} (attempt {failures}): {e}")

            if failures > self.config.MAX_ATTEMPTS:
                state.list_failures.pop(folder_id, None)
                state.leftovers = Page()
                self.progress_log.write(LogEntry(
                    status=f"Error listing folder: {e}",
                    source_id=folder_id,
                    is_error=True,
                ))
                self._checkpoint(state)
                return True

            state.list_failures[folder_id] = failures
            if cursor is None:
                state.pending_folders.insert(0, folder_id)
            self._checkpoint(state)
            return False

        state.list_failures.pop(folder_id, None)
        state.leftovers = Page(folder_id=folder_id, items=items, next_cursor=next_cursor)
        self._checkpoint(state)
        return True

    def _process_batch(self, state: JobState, items: List[Node],
                       current_folder_id: Optional[str], stats: Dict[str, int]):
        """Pop and process items until the batch is empty or the budget runs out"""
        state.run_metadata.current_folder_id = current_folder_id

        while items and self.budget.can_continue():
            item = items.pop()
            result = self._process_item(state, item, current_folder_id)

            if result.kind == ResultKind.SUCCESS:
                stats['processed'] += 1
                self.progress_log.write(result.entry)
            elif result.kind == ResultKind.RETRY:
                stats['failed'] += 1
                failed = state.push_retry(item, result.error)
                logger.warning(f"✗ {item.title} ({item.id}) failed, attempt {failed.attempt}: "
                               f"{failed.error}")
            elif result.kind == ResultKind.TERMINAL:
                stats['failed'] += 1
                self.progress_log.write(LogEntry(
                    status=item.error or 'Unknown error',
                    source_id=item.id,
                    source_title=item.title,
                    parent_id=_first_parent(item),
                    is_error=True,
                ))
            else:
                stats['skipped'] += 1

            self._checkpoint(state)
            if self.on_item:
                self.on_item(item, result)

    def _process_item(self, state: JobState, item: Node,
                      current_folder_id: Optional[str]) -> ItemResult:
        if item.attempt > self.config.MAX_ATTEMPTS:
            return ItemResult.terminal()

        try:
            if state.kind == JobKind.CHANGE_OWNER:
                return self._change_owner_item(state, item)
            return self._copy_item(state, item, current_folder_id)
        except Exception as e:
            return ItemResult.retry(e)

    # ------------------------------------------------------------------
    # copy
    # ------------------------------------------------------------------

    def _copy_item(self, state: JobState, item: Node,
                   current_folder_id: Optional[str]) -> ItemResult:
        config = self.config

        # a shortcut to an ancestor of the source brings the copy itself into view
        if state.is_job_output(item.id):
            return ItemResult.skipped()

        duplicate = config.SKIP_DUPLICATE_ID and item.id in state.completed
        if duplicate and not config.CREATE_SHORTCUTS_WHEN_DUPLICATE:
            return ItemResult.skipped()

        if item.is_shortcut and not config.CREATE_SHORTCUT_COPIES:
            return ItemResult.skipped()

        parent_id = self._dest_parent(state, item, current_folder_id)

        if duplicate:
            shortcut = self._create_shortcut(parent_id, item, state.completed[item.id])
            self._copy_permissions(state, item, shortcut)
            return ItemResult.success(self._copy_entry(ItemStatus.SHORTCUT_CREATED, item, shortcut, parent_id))

        if item.is_shortcut:
            details = self.client.resolve_shortcut(item.id)
            target_id = details['targetId']
            if state.is_job_output(target_id):
                return ItemResult.skipped()

            copied_target_id = state.completed.get(target_id)
            if copied_target_id:
                shortcut = self._create_shortcut(parent_id, item, copied_target_id)
                state.mark_completed(item.id, shortcut.id)
                return ItemResult.success(self._copy_entry(ItemStatus.SHORTCUT_CREATED, item, shortcut, parent_id))

            # copy the target itself into the shortcut's position
            source = Node(
                id=target_id,
                title=item.title,
                mime_type=details.get('targetMimeType', ''),
                parents=list(item.parents),
                description=item.description,
                owners=list(item.owners),
            )
            new_node = self._materialize(state, source, parent_id)
            state.mark_completed(target_id, new_node.id)
            state.mark_completed(item.id, new_node.id)
        else:
            source = item
            new_node = self._materialize(state, item, parent_id)
            state.mark_completed(item.id, new_node.id)

        self._copy_permissions(state, source, new_node)
        return ItemResult.success(self._copy_entry(ItemStatus.COPIED, item, new_node, parent_id))

    def _copy_permissions(self, state: JobState, source: Node, new_node: Node):
        if state.options.copy_permissions and source.mime_type in MimeType.NATIVE:
            self.permissions.copy_permissions(source.id, new_node.id, source.owners)

    def _dest_parent(self, state: JobState, item: Node, current_folder_id: Optional[str]) -> str:
        """Destination folder that mirrors the item's source parent"""
        if current_folder_id and current_folder_id in item.parents:
            source_parent = current_folder_id
        else:
            source_parent = _first_parent(item)

        dest_parent = state.id_map.get(source_parent) if source_parent else None
        if not dest_parent:
            raise UnmappedParentError(item.id, source_parent)
        return dest_parent

    def _description(self, node: Node) -> str:
        if self.config.REPLACE_DESCRIPTION_WITH_ORIGINAL_LINK:
            return original_link_description(node.id)
        return node.description

    def _materialize(self, state: JobState, node: Node, parent_id: str) -> Node:
        """Create a folder or copy a file under parent_id"""
        if node.mime_type == MimeType.FOLDER:
            existing = state.id_map.get(node.id)
            if existing:
                return self.client.get_node(existing)

            folder = self.client.create_folder(parent_id, node.title, self._description(node))
            state.map_folder(node.id, folder.id)
            state.enqueue_folder(node.id)
            return folder

        return self.client.copy_node(parent_id, node.title, self._description(node), node.id)

    def _create_shortcut(self, parent_id: str, item: Node, target_id: str) -> Node:
        return self.client.create_shortcut(parent_id, item.title, self._description(item), target_id)

    @staticmethod
    def _copy_entry(status: str, item: Node, new_node: Node, parent_id: str) -> LogEntry:
        return LogEntry(
            status=status,
            source_id=item.id,
            source_title=item.title,
            dest_id=new_node.id,
            parent_id=parent_id,
            size_bytes=new_node.size_bytes if new_node.size_bytes is not None else item.size_bytes,
        )

    # ------------------------------------------------------------------
    # owner change
    # ------------------------------------------------------------------

    def _change_owner_item(self, state: JobState, item: Node) -> ItemResult:
        if item.id in state.bookkeeping_ids():
            return ItemResult.skipped()

        if self.config.SKIP_DUPLICATE_ID and item.id in state.completed:
            return ItemResult.skipped()

        options = state.options
        target = item

        if item.is_shortcut:
            if not options.follow_shortcuts:
                return ItemResult.skipped()
            details = self.client.resolve_shortcut(item.id)
            target = self.client.get_node(details['targetId'])
            if self.config.SKIP_DUPLICATE_ID and target.id in state.completed:
                state.mark_completed(item.id, target.id)
                return ItemResult.skipped()

        if target.is_folder:
            state.enqueue_folder(target.id)

        removed = False
        changed = False

        if options.remove_permissions:
            removed = self.permissions.remove_all_permissions(target.id)

        if options.new_owner_email and target.owned_by_me:
            self.permissions.change_owner(target.id, options.new_owner_email)
            changed = True

        state.mark_completed(item.id, target.id)
        state.mark_completed(target.id, target.id)

        if changed and removed:
            status = ItemStatus.OWNER_CHANGED_AND_PERMISSIONS_REMOVED
        elif changed:
            status = ItemStatus.OWNER_CHANGED
        elif removed:
            status = ItemStatus.PERMISSIONS_REMOVED
        else:
            return ItemResult.skipped()

        return ItemResult.success(LogEntry(
            status=status,
            source_id=item.id,
            source_title=item.title,
            dest_id=target.id if target is not item else None,
            parent_id=_first_parent(item),
            size_bytes=target.size_bytes,
        ))

    def _checkpoint(self, state: JobState):
        if self.checkpoint:
            self.checkpoint(state)


def _first_parent(item: Node) -> Optional[str]:
    return item.parents[0] if item.parents else None
