"""Sidequest routes: ticket tree, approval, sprints, implementation, finalization."""

import logging
from typing import Any, Dict, List, Literal, Optional

from fastapi import APIRouter, HTTPException, Header
from pydantic import BaseModel, Field

from sidequest.c2_approval_service import ApprovalService
from sidequest.c2_finalization_service import FinalizationService
from sidequest.c2_implementation_service import ImplementationSessionService
from sidequest.c2_sprint_planner import SprintPlanService
from sidequest.c2_ticket_service import QuestService, TicketService
from sidequest.core.exceptions import ConflictError, NotFoundError

logger = logging.getLogger(__name__)

TicketTypeName = Literal["EPIC", "STORY", "TASK", "TEST", "SUBTASK"]
PriorityName = Literal["LOW", "MEDIUM", "HIGH", "URGENT"]


# Request Models
class CreateQuestRequest(BaseModel):
    project_id: str = Field(..., description="Owning project")
    title: str = Field(..., min_length=1, description="Quest title")
    description: Optional[str] = Field(None, description="Quest description")


class CreateTicketRequest(BaseModel):
    title: str = Field(..., min_length=1, description="Ticket title")
    ticket_type: TicketTypeName = Field(..., description="EPIC, STORY, TASK, TEST or SUBTASK")
    parent_ticket_id: Optional[str] = Field(None, description="Parent ticket (required unless EPIC)")
    description: Optional[str] = Field(None, description="Detailed description")
    acceptance_criteria: List[str] = Field(default_factory=list, description="Ordered acceptance criteria")
    priority: Optional[PriorityName] = Field(None, description="Ticket priority")
    story_points: Optional[int] = Field(None, ge=1, le=13, description="Story points")
    sprint_group: Optional[int] = Field(None, ge=1, description="Sprint label")
    linked_repo_ids: List[str] = Field(default_factory=list, description="Linked repositories")
    linked_doc_ids: List[str] = Field(default_factory=list, description="Linked documents")
    linked_feature_ids: List[str] = Field(default_factory=list, description="Linked features")


class UpdateTicketRequest(BaseModel):
    updates: Dict[str, Any] = Field(..., description="Fields to update")


class ReorderTicketRequest(BaseModel):
    ticket_id: str = Field(..., description="Ticket to move")
    new_parent_id: Optional[str] = Field(None, description="New parent, null for a root EPIC")
    new_sort_order: int = Field(..., ge=0, description="Position among the new siblings")


class ApproveTicketRequest(BaseModel):
    cascade_to_children: bool = Field(False, description="Also approve pending descendants")


class OrganizeSprintsRequest(BaseModel):
    strategy: Optional[Literal["balanced", "priority_first", "dependency_aware"]] = Field(
        None, description="Organization strategy"
    )
    max_points_per_sprint: Optional[int] = Field(None, ge=5, le=100, description="Point budget per sprint")
    max_tickets_per_sprint: Optional[int] = Field(None, ge=3, le=50, description="Ticket budget per sprint")


class StartImplementationRequest(BaseModel):
    auto_advance: bool = Field(True, description="Keep implementing after each approval")
    start_from_ticket_id: Optional[str] = Field(None, description="Ticket to start with")


class TicketModifications(BaseModel):
    title: Optional[str] = Field(None, description="New title")
    description: Optional[str] = Field(None, description="New description")
    acceptance_criteria: Optional[List[str]] = Field(None, description="New acceptance criteria")


class ImplementationResult(BaseModel):
    success: bool = Field(..., description="Whether implementation succeeded")
    pr_url: Optional[str] = None
    pr_number: Optional[int] = None
    commit_sha: Optional[str] = None
    branch_name: Optional[str] = None
    files_changed: Optional[List[str]] = None
    error: Optional[str] = None
    notes: Optional[str] = None


class AdvanceRequest(BaseModel):
    action: Literal["approve", "modify", "skip"] = Field(..., description="Decision on the current ticket")
    modifications: Optional[TicketModifications] = Field(None, description="Field overwrites for modify")
    implementation_result: Optional[ImplementationResult] = Field(None, description="Outcome for approve")


class FinalizePlanRequest(BaseModel):
    create_sprint: bool = Field(True, description="Create an external sprint container")
    sprint_name: Optional[str] = Field(None, description="Sprint name")
    sprint_goal: Optional[str] = Field(None, description="Sprint goal")
    default_assignee_id: Optional[str] = Field(None, description="Assignee for created tasks")


def _http_error(e: Exception, action: str) -> HTTPException:
    """Map engine exceptions onto HTTP status codes."""
    if isinstance(e, HTTPException):
        return e
    if isinstance(e, NotFoundError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, ConflictError):
        return HTTPException(status_code=409, detail={"message": str(e), "existing_id": e.existing_id})
    if isinstance(e, ValueError):
        logger.warning(f"Validation error while {action}: {e}")
        return HTTPException(status_code=400, detail=str(e))
    logger.error(f"Failed while {action}: {e}")
    return HTTPException(status_code=500, detail=str(e))


def create_sidequest_router() -> APIRouter:
    """Create the sidequest router.

    Returns:
        APIRouter: Configured router with sidequest endpoints
    """
    router = APIRouter(prefix="/api/sidequests", tags=["sidequests"])

    @router.post("", status_code=201)
    async def create_quest_endpoint(
        request: CreateQuestRequest,
        user_id: Optional[str] = Header(None, alias="X-User-ID"),
    ):
        try:
            return QuestService.create_quest(
                project_id=request.project_id,
                title=request.title,
                description=request.description,
                created_by=user_id,
            )
        except Exception as e:
            raise _http_error(e, "creating sidequest")

    @router.get("/{quest_id}")
    async def get_quest_endpoint(quest_id: str):
        try:
            return QuestService.get_quest(quest_id)
        except Exception as e:
            raise _http_error(e, "reading sidequest")

    @router.get("/{quest_id}/tickets")
    async def list_tickets_endpoint(quest_id: str):
        """Flat ticket list plus the nested tree."""
        try:
            return TicketService.list_tickets(quest_id)
        except Exception as e:
            raise _http_error(e, "listing tickets")

    @router.post("/{quest_id}/tickets", status_code=201)
    async def create_ticket_endpoint(
        quest_id: str,
        request: CreateTicketRequest,
        user_id: Optional[str] = Header(None, alias="X-User-ID"),
    ):
        logger.info(f"[TICKET_CREATE] {request.ticket_type} '{request.title[:60]}' in {quest_id}")
        try:
            return await TicketService.create_ticket(
                quest_id=quest_id, created_by=user_id, **request.model_dump()
            )
        except Exception as e:
            raise _http_error(e, "creating ticket")

    @router.patch("/{quest_id}/tickets")
    async def reorder_ticket_endpoint(
        quest_id: str,
        request: ReorderTicketRequest,
        user_id: Optional[str] = Header(None, alias="X-User-ID"),
    ):
        """Move a ticket to a new parent and position."""
        try:
            return await TicketService.reorder_ticket(
                quest_id=quest_id,
                ticket_id=request.ticket_id,
                new_parent_id=request.new_parent_id,
                new_sort_order=request.new_sort_order,
                changed_by=user_id,
            )
        except Exception as e:
            raise _http_error(e, "reordering ticket")

    @router.get("/{quest_id}/tickets/{ticket_id}")
    async def get_ticket_endpoint(quest_id: str, ticket_id: str, include_history: bool = False):
        try:
            return TicketService.get_ticket(ticket_id, quest_id, include_history=include_history)
        except Exception as e:
            raise _http_error(e, "reading ticket")

    @router.patch("/{quest_id}/tickets/{ticket_id}")
    async def update_ticket_endpoint(
        quest_id: str,
        ticket_id: str,
        request: UpdateTicketRequest,
        user_id: Optional[str] = Header(None, alias="X-User-ID"),
    ):
        try:
            return await TicketService.update_ticket(quest_id, ticket_id, request.updates, changed_by=user_id)
        except Exception as e:
            raise _http_error(e, "updating ticket")

    @router.delete("/{quest_id}/tickets/{ticket_id}")
    async def delete_ticket_endpoint(quest_id: str, ticket_id: str):
        """Delete a ticket and its descendants."""
        try:
            return await TicketService.delete_ticket(quest_id, ticket_id)
        except Exception as e:
            raise _http_error(e, "deleting ticket")

    @router.post("/{quest_id}/tickets/{ticket_id}/approve")
    async def approve_ticket_endpoint(
        quest_id: str,
        ticket_id: str,
        request: Optional[ApproveTicketRequest] = None,
        user_id: Optional[str] = Header(None, alias="X-User-ID"),
    ):
        cascade = request.cascade_to_children if request else False
        try:
            return await ApprovalService.approve_ticket(quest_id, ticket_id, user_id, cascade)
        except Exception as e:
            raise _http_error(e, "approving ticket")

    @router.post("/{quest_id}/organize-sprints")
    async def organize_sprints_endpoint(quest_id: str, request: Optional[OrganizeSprintsRequest] = None):
        request = request or OrganizeSprintsRequest()
        try:
            return await SprintPlanService.organize_sprints(
                quest_id,
                strategy=request.strategy,
                max_points_per_sprint=request.max_points_per_sprint,
                max_tickets_per_sprint=request.max_tickets_per_sprint,
            )
        except Exception as e:
            raise _http_error(e, "organizing sprints")

    @router.get("/{quest_id}/implement")
    async def get_implementation_endpoint(quest_id: str):
        try:
            return ImplementationSessionService.get_session(quest_id)
        except Exception as e:
            raise _http_error(e, "reading implementation session")

    @router.post("/{quest_id}/implement", status_code=201)
    async def start_implementation_endpoint(
        quest_id: str,
        request: Optional[StartImplementationRequest] = None,
        user_id: Optional[str] = Header(None, alias="X-User-ID"),
    ):
        request = request or StartImplementationRequest()
        try:
            return await ImplementationSessionService.start_session(
                quest_id,
                started_by=user_id,
                auto_advance=request.auto_advance,
                start_from_ticket_id=request.start_from_ticket_id,
            )
        except Exception as e:
            raise _http_error(e, "starting implementation")

    @router.post("/{quest_id}/implement/advance")
    async def advance_implementation_endpoint(
        quest_id: str,
        request: AdvanceRequest,
        user_id: Optional[str] = Header(None, alias="X-User-ID"),
    ):
        modifications = request.modifications.model_dump(exclude_none=True) if request.modifications else None
        result = (
            request.implementation_result.model_dump(exclude_none=True)
            if request.implementation_result
            else None
        )
        try:
            return await ImplementationSessionService.advance(
                quest_id,
                request.action,
                modifications=modifications,
                implementation_result=result,
                changed_by=user_id,
            )
        except Exception as e:
            raise _http_error(e, "advancing implementation")

    @router.post("/{quest_id}/implement/pause")
    async def pause_implementation_endpoint(quest_id: str):
        try:
            return await ImplementationSessionService.pause_session(quest_id)
        except Exception as e:
            raise _http_error(e, "pausing implementation")

    @router.post("/{quest_id}/implement/resume")
    async def resume_implementation_endpoint(quest_id: str):
        try:
            return await ImplementationSessionService.resume_session(quest_id)
        except Exception as e:
            raise _http_error(e, "resuming implementation")

    @router.post("/{quest_id}/finalize-plan")
    async def finalize_plan_endpoint(
        quest_id: str,
        request: Optional[FinalizePlanRequest] = None,
        user_id: Optional[str] = Header(None, alias="X-User-ID"),
    ):
        request = request or FinalizePlanRequest()
        try:
            return await FinalizationService.finalize_plan(
                quest_id,
                created_by=user_id,
                create_sprint=request.create_sprint,
                sprint_name=request.sprint_name,
                sprint_goal=request.sprint_goal,
                default_assignee_id=request.default_assignee_id,
            )
        except Exception as e:
            raise _http_error(e, "finalizing plan")

    return router
