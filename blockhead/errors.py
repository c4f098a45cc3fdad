"""
Error taxonomy for site lifecycle operations.

Every error carries an operator-facing message and, where one applies, the
shell command an operator can run by hand to finish the job.
"""


class BlockheadError(Exception):
    """Base exception for all BlockHead operations."""

    status_code = 500

    def __init__(self, message: str, *, remediation: str = None):
        super().__init__(message)
        self.message = message
        self.remediation = remediation

    def __str__(self) -> str:
        if self.remediation:
            return f"{self.message}\nTry running:\n{self.remediation}"
        return self.message

    def to_dict(self) -> dict:
        return {
            "error": type(self).__name__,
            "detail": self.message,
            "remediation": self.remediation,
        }


class InvalidDomain(BlockheadError):
    """Domain contains characters outside [A-Za-z0-9.-]."""

    status_code = 400


class InvalidPath(BlockheadError):
    """Site root is not an absolute path or is already owned by another site."""

    status_code = 400


class DuplicateDomain(BlockheadError):
    """A site with this domain already exists."""

    status_code = 409


class PortConflict(BlockheadError):
    """Another site already proxies to this local port."""

    status_code = 409


class DirectoryPermissionError(BlockheadError):
    """Parent of the site root cannot be created or written."""

    status_code = 400


class DestinationNotEmpty(BlockheadError):
    """Site root already holds files and overwrite was not requested."""

    status_code = 409


class FetchError(BlockheadError):
    """Cloning the site repository failed."""

    status_code = 502


class SyncError(BlockheadError):
    """Pulling the latest revision failed."""

    status_code = 502


class ReloadFailure(BlockheadError):
    """The web server could not be told about the rendered config."""

    status_code = 502


class ProcessStartFailure(BlockheadError):
    """A site process could not be launched. Recorded, never raised."""


class NotFound(BlockheadError):
    """No site with this domain is stored."""

    status_code = 404
