"""Gameshelf exception hierarchy."""


class GameshelfError(Exception):
    """Base exception for Gameshelf."""

    code = "GAMESHELF_ERROR"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict:
        return {
            "error": True,
            "code": self.code,
            "message": self.message,
        }


class NotFoundError(GameshelfError):
    """A requested entity does not exist."""

    code = "NOT_FOUND"


class LibraryNotFoundError(NotFoundError):
    def __init__(self, library_id: int):
        self.library_id = library_id
        super().__init__(f"Library with id {library_id} not found")


class GameNotFoundError(NotFoundError):
    def __init__(self, game_id: int):
        self.game_id = game_id
        super().__init__(f"Game with id {game_id} not found")


class GameNotMatchedError(NotFoundError):
    """No metadata provider could identify a path."""

    code = "GAME_NOT_MATCHED"

    def __init__(self, path: str, consulted: list[str] | None = None):
        self.path = path
        self.consulted = consulted or []
        super().__init__(f"Could not identify game at path '{path}'")


class ScanAlreadyRunningError(GameshelfError):
    code = "SCAN_IN_PROGRESS"

    def __init__(self, library_id: int):
        self.library_id = library_id
        super().__init__(f"A scan is already in progress for library {library_id}")


class NoMetadataProvidersError(GameshelfError):
    code = "NO_METADATA_PROVIDERS"

    def __init__(self):
        super().__init__("No metadata provider is registered, cannot scan libraries")


class ScheduleConfigurationError(GameshelfError):
    """Invalid scan schedule (usually a malformed cron expression)."""

    code = "INVALID_SCHEDULE"


class DirectoryMappingConflictError(GameshelfError):
    code = "DIRECTORY_CONFLICT"

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Directory '{path}' is already mapped to a library")


class ImageDownloadError(GameshelfError):
    code = "IMAGE_DOWNLOAD_FAILED"

    def __init__(self, url: str, reason: str):
        self.url = url
        super().__init__(f"Failed to download image '{url}': {reason}")
