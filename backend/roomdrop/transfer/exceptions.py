"""Exceptions raised by the transfer and folder layers."""


class TransferError(Exception):
    """Base exception for transfer errors."""
    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class NotConnectedError(TransferError):
    """Raised when sending is attempted without a live relay connection."""
    def __init__(self, message: str = "Connect to the relay before sending"):
        super().__init__(message)


class FolderError(TransferError):
    """Base exception for folder save operations."""
    def __init__(self, message: str, folder_name: str):
        self.folder_name = folder_name
        super().__init__(message)


class FolderNotFoundError(FolderError):
    """Raised when no received files belong to the requested folder."""
    def __init__(self, folder_name: str):
        super().__init__(f"Folder {folder_name!r} is not among received transfers", folder_name)


class FolderNotReadyError(FolderError):
    """Raised when a folder still has files that are not fully received."""
    def __init__(self, folder_name: str, pending: int):
        self.pending = pending
        super().__init__(
            f"Folder {folder_name!r} has {pending} file(s) not yet complete",
            folder_name,
        )


class FolderSaveCancelled(FolderError):
    """Raised when the user aborts choosing a target directory."""
    def __init__(self, folder_name: str):
        super().__init__(f"Saving folder {folder_name!r} was cancelled", folder_name)


class FolderSaveError(FolderError):
    """Raised when writing a folder to disk fails."""
    def __init__(self, message: str, folder_name: str):
        super().__init__(f"Failed to save folder {folder_name!r}: {message}", folder_name)
