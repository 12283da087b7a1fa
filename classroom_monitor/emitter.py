import logging
from typing import Optional

from classroom_monitor.models import BehaviorWarning, DetectedBehavior, WarningType

logger = logging.getLogger(__name__)


def describe(warning_type: WarningType, confidence: Optional[int] = None) -> str:
    if confidence is None:
        return f"{warning_type.value} detected"
    return f"{warning_type.value} detected with {confidence}% confidence"


class WarningEmitter:
    """
    Turns identity-attributed behaviors into persisted warnings.

    Emission is fire-and-forget: a failing store is logged and the caller
    carries on.
    """

    def __init__(self, service):
        self.service = service

    def emit(self, behavior: DetectedBehavior, class_id: str) -> Optional[BehaviorWarning]:
        if not behavior.student_id:
            logger.debug(f"Dropping {behavior.type.value} behavior without identity")
            return None
        return self.emit_for(
            behavior.student_id,
            class_id,
            behavior.type,
            describe(behavior.type, behavior.confidence),
        )

    def emit_for(
        self,
        student_id: str,
        class_id: str,
        warning_type: WarningType,
        description: str,
    ) -> Optional[BehaviorWarning]:
        try:
            warning = self.service.emit_warning(student_id, class_id, warning_type, description)
        except Exception as e:
            logger.error(f"Failed to emit {warning_type.value} warning for {student_id}: {e}")
            return None
        logger.info(f"Warning emitted: {warning_type.value} for student {student_id} in class {class_id}")
        return warning
