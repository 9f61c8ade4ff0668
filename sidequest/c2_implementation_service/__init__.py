from sidequest.c2_implementation_service.session_service import (
    ImplementationSessionService,
    session_to_dict,
)

__all__ = ["ImplementationSessionService", "session_to_dict"]
