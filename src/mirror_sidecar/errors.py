"""Exception hierarchy for the mirror sidecar."""


class MirrorSidecarError(Exception):
    """Base class for all sidecar errors."""


class SyncError(MirrorSidecarError):
    """Filesystem failure while mirroring a directory tree."""


class GitError(MirrorSidecarError):
    """Transport or authentication failure talking to the remote repository."""


class HookError(MirrorSidecarError):
    """The pre-update shell command failed."""


class SupervisorError(MirrorSidecarError):
    """The managed process could not be started, stopped or restarted."""
