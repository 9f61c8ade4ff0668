from sidequest.c2_finalization_service.finalization_service import FinalizationService
from sidequest.c2_finalization_service.task_sink import (
    DatabaseSequenceCounter,
    DatabaseTaskSink,
    ExternalTaskSink,
    SequenceCounter,
)

__all__ = [
    "FinalizationService",
    "DatabaseSequenceCounter",
    "DatabaseTaskSink",
    "ExternalTaskSink",
    "SequenceCounter",
]
