"""
Exceptions raised by the tree copy engine
"""


class TreeCopyError(Exception):
    """Base class for tree copy errors"""


class AuthenticationError(TreeCopyError):
    """Credentials missing, unreadable or requiring user consent"""


class DescendantDestinationError(TreeCopyError):
    """Destination folder lies inside the source folder"""

    def __init__(self, source_id: str, dest_id: str):
        self.source_id = source_id
        self.dest_id = dest_id
        super().__init__(
            "Cannot select destination folder that exists within the source folder "
            f"(source: {source_id}, destination: {dest_id})"
        )


class PriorStateNotFoundError(TreeCopyError):
    """Marker document or stored job state missing when resuming"""

    def __init__(self, folder_id: str, detail: str = ''):
        self.folder_id = folder_id
        message = (
            f"Could not find the state document or saved job for folder {folder_id}. "
            "Make sure you selected the folder the operation was started on."
        )
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class UnmappedParentError(TreeCopyError):
    """No destination folder exists yet for an item's parent"""

    def __init__(self, item_id: str, parent_id: str):
        self.item_id = item_id
        self.parent_id = parent_id
        super().__init__(f"No destination folder mapped for parent {parent_id} of {item_id}")
