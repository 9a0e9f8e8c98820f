class AppError(Exception):
    """Base app error."""


class ValidationError(AppError):
    pass


class NotFoundError(AppError):
    pass


class FxUnavailableError(AppError):
    pass


class RemoteSyncError(AppError):
    """Any failure talking to the remote store."""


class RemoteUnavailableError(RemoteSyncError):
    pass


class RemoteRejectedError(RemoteSyncError):
    def __init__(self, action: str, message: str | None = None):
        self.action = action
        self.message = message or "Error en el servidor"
        super().__init__(f"{action} rejected by remote store: {self.message}")


class DanglingReferenceError(AppError):
    """A detail references a product that is not in the local cache."""

    kind = "dangling_reference"
