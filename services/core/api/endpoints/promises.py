"""
Promises API Endpoints Module
Thin wrappers: parse the request, call the service, shape the response.
Domain exceptions are rendered by the handler registered in main.create_app().
"""
import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from api.dependencies import (
    get_current_user_id,
    get_lifecycle,
    get_milestones,
    get_notes,
)
from exceptions import NotFoundError, NotFoundOrForbidden
from milestone_service import MilestoneService
from note_service import NoteService
from promise_lifecycle_service import PromiseLifecycleService
from schemas import (
    MessageResponse,
    MilestoneCreate,
    MilestoneResponse,
    MilestoneUpdate,
    NoteCreate,
    NoteResponse,
    PromiseCreate,
    PromiseDetailResponse,
    PromiseResponse,
    PromiseUpdate,
)

router = APIRouter(prefix="/api/promises", tags=["promises"])


def _detail(promise) -> PromiseDetailResponse:
    return PromiseDetailResponse.from_promise(promise, MilestoneService.progress(promise.milestones))


# =============================================================================
# Promises
# =============================================================================

@router.get("", response_model=List[PromiseResponse])
async def list_promises(
    role: Optional[str] = Query(None, description="owned | promised-to-me | mentoring | all"),
    status: Optional[str] = Query(None),
    user_id: uuid.UUID = Depends(get_current_user_id),
    lifecycle: PromiseLifecycleService = Depends(get_lifecycle),
):
    return await lifecycle.list_promises(user_id, role_filter=role, status_filter=status)


@router.get("/owned", response_model=List[PromiseResponse])
async def list_owned(
    status: Optional[str] = Query(None),
    user_id: uuid.UUID = Depends(get_current_user_id),
    lifecycle: PromiseLifecycleService = Depends(get_lifecycle),
):
    return await lifecycle.list_promises(user_id, role_filter="owned", status_filter=status)


@router.get("/promised-to-me", response_model=List[PromiseResponse])
async def list_promised_to_me(
    status: Optional[str] = Query(None),
    user_id: uuid.UUID = Depends(get_current_user_id),
    lifecycle: PromiseLifecycleService = Depends(get_lifecycle),
):
    return await lifecycle.list_promises(user_id, role_filter="promised-to-me", status_filter=status)


@router.get("/mentoring", response_model=List[PromiseResponse])
async def list_mentoring(
    status: Optional[str] = Query(None),
    user_id: uuid.UUID = Depends(get_current_user_id),
    lifecycle: PromiseLifecycleService = Depends(get_lifecycle),
):
    return await lifecycle.list_promises(user_id, role_filter="mentoring", status_filter=status)


@router.get("/{promise_id}", response_model=PromiseDetailResponse)
async def get_promise(
    promise_id: str,
    user_id: uuid.UUID = Depends(get_current_user_id),
    lifecycle: PromiseLifecycleService = Depends(get_lifecycle),
):
    promise = await lifecycle.get_promise(promise_id, user_id)
    if promise is None:
        raise NotFoundError("promise", promise_id)
    return _detail(promise)


@router.post("", response_model=PromiseDetailResponse, status_code=201)
async def create_promise(
    payload: PromiseCreate,
    user_id: uuid.UUID = Depends(get_current_user_id),
    lifecycle: PromiseLifecycleService = Depends(get_lifecycle),
):
    promise = await lifecycle.create_promise(user_id, payload.model_dump())
    return _detail(promise)


@router.put("/{promise_id}", response_model=PromiseDetailResponse)
async def update_promise(
    promise_id: str,
    payload: PromiseUpdate,
    user_id: uuid.UUID = Depends(get_current_user_id),
    lifecycle: PromiseLifecycleService = Depends(get_lifecycle),
):
    promise = await lifecycle.update_promise(promise_id, user_id, payload.model_dump(exclude_unset=True))
    return _detail(promise)


@router.delete("/{promise_id}", response_model=MessageResponse)
async def delete_promise(
    promise_id: str,
    user_id: uuid.UUID = Depends(get_current_user_id),
    lifecycle: PromiseLifecycleService = Depends(get_lifecycle),
):
    await lifecycle.delete_promise(promise_id, user_id)
    return MessageResponse(message="Promise deleted successfully")


@router.post("/{promise_id}/decline", response_model=PromiseResponse)
async def decline_promise(
    promise_id: str,
    user_id: uuid.UUID = Depends(get_current_user_id),
    lifecycle: PromiseLifecycleService = Depends(get_lifecycle),
):
    return await lifecycle.decline_promise(promise_id, user_id)


# =============================================================================
# Milestones
# =============================================================================

@router.get("/{promise_id}/milestones", response_model=List[MilestoneResponse])
async def list_milestones(
    promise_id: str,
    user_id: uuid.UUID = Depends(get_current_user_id),
    milestones: MilestoneService = Depends(get_milestones),
):
    return await milestones.list_milestones(promise_id, user_id)


@router.post("/{promise_id}/milestones", response_model=MilestoneResponse, status_code=201)
async def create_milestone(
    promise_id: str,
    payload: MilestoneCreate,
    user_id: uuid.UUID = Depends(get_current_user_id),
    milestones: MilestoneService = Depends(get_milestones),
):
    return await milestones.create_milestone(promise_id, user_id, payload.model_dump())


@router.put("/{promise_id}/milestones/{milestone_id}", response_model=MilestoneResponse)
async def update_milestone(
    promise_id: str,
    milestone_id: str,
    payload: MilestoneUpdate,
    user_id: uuid.UUID = Depends(get_current_user_id),
    milestones: MilestoneService = Depends(get_milestones),
):
    return await milestones.update_milestone(
        promise_id, milestone_id, user_id, payload.model_dump(exclude_unset=True)
    )


@router.delete("/{promise_id}/milestones/{milestone_id}", response_model=MessageResponse)
async def delete_milestone(
    promise_id: str,
    milestone_id: str,
    user_id: uuid.UUID = Depends(get_current_user_id),
    milestones: MilestoneService = Depends(get_milestones),
):
    await milestones.delete_milestone(promise_id, milestone_id, user_id)
    return MessageResponse(message="Milestone deleted successfully")


# =============================================================================
# Notes
# =============================================================================

@router.post("/{promise_id}/notes", response_model=NoteResponse, status_code=201)
async def create_note(
    promise_id: str,
    payload: NoteCreate,
    user_id: uuid.UUID = Depends(get_current_user_id),
    notes: NoteService = Depends(get_notes),
):
    note = await notes.create_note(promise_id, user_id, payload.note_text)
    if note is None:
        raise NotFoundOrForbidden("promise", promise_id)
    return note


@router.get("/{promise_id}/notes", response_model=List[NoteResponse])
async def list_notes(
    promise_id: str,
    user_id: uuid.UUID = Depends(get_current_user_id),
    notes: NoteService = Depends(get_notes),
):
    return await notes.list_notes(promise_id, user_id)


@router.delete("/{promise_id}/notes/{note_id}", response_model=MessageResponse)
async def delete_note(
    promise_id: str,
    note_id: str,
    user_id: uuid.UUID = Depends(get_current_user_id),
    notes: NoteService = Depends(get_notes),
):
    if not await notes.delete_note(note_id, user_id, promise_id=promise_id):
        raise NotFoundError("note", note_id)
    return MessageResponse(message="Note deleted successfully")
