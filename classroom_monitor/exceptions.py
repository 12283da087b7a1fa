class MonitorError(Exception):
    """Base class for classroom monitor errors."""


class FrameUnavailable(MonitorError):
    """No current frame (source initializing or permission denied)."""


class ClassNotFound(MonitorError):
    def __init__(self, class_id: str):
        super().__init__(f"Class '{class_id}' not found")
        self.class_id = class_id


class SessionNotActive(MonitorError):
    def __init__(self, class_id: str):
        super().__init__(f"Class '{class_id}' has no active session")
        self.class_id = class_id


class CollaboratorFailure(MonitorError):
    """Persistence or network failure in a storage collaborator call."""


class FinalizeError(CollaboratorFailure):
    """Finalizing attendance failed; the session must not report success."""


class MatcherConfigurationError(MonitorError):
    """Unknown or unusable identity matching strategy."""
