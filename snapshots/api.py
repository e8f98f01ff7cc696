"""FastAPI router exposing snapshot history to a history-browsing UI."""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, FastAPI, HTTPException, Query
from pydantic import BaseModel, Field

from .errors import BackupNotFoundError, BackupRestoreError
from .manager import BackupManager


class BackupEntryModel(BaseModel):
    """One history entry as listed for a document."""

    id: str = Field(..., description="Entry id derived from the creation time.")
    created_at: int = Field(..., description="Creation time in epoch milliseconds.")
    size: int = Field(..., ge=0, description="Stored size in bytes.")
    category: str = Field(..., description="Retention category computed at request time.")
    is_initial: bool = Field(False, description="True for the protected first snapshot of the document.")
    change_preview: Optional[str] = Field(None, description="One-line summary of the change.")
    primary_field_value: Optional[str] = Field(None, description="Section value nearest to the change.")


class BackupListResponse(BaseModel):
    path: str
    entries: List[BackupEntryModel] = Field(default_factory=list)


class BackupContentResponse(BaseModel):
    path: str
    entry_id: str
    content: str


class SnapshotRequest(BaseModel):
    path: str = Field(..., min_length=1)
    content: str
    initial: bool = False


class SnapshotResponse(BaseModel):
    path: str
    outcome: str


class RestoreRequest(BaseModel):
    path: str = Field(..., min_length=1)
    entry_id: str = Field(..., min_length=1)


class RestoreResponse(BaseModel):
    path: str
    entry_id: str
    safety_backup: Optional[str] = None


class CapacityResponse(BaseModel):
    changed: bool
    removed: int
    freed_bytes: int
    limit_bytes: Optional[int] = None
    total_size: int


class BackupHistoryService:
    """Router helper wrapping a :class:`BackupManager`."""

    def __init__(self, manager: BackupManager) -> None:
        self._manager = manager

    def router(self) -> APIRouter:
        router = APIRouter(prefix="/v1/backups", tags=["backups"])
        manager = self._manager

        @router.get("/entries", response_model=BackupListResponse)
        def entries(path: str = Query(..., min_length=1)) -> BackupListResponse:
            descriptors = manager.list_backups(path)
            return BackupListResponse(
                path=path,
                entries=[
                    BackupEntryModel(
                        id=item.id,
                        created_at=item.created_at,
                        size=item.size,
                        category=item.category.value,
                        is_initial=item.is_initial,
                        change_preview=item.change_preview,
                        primary_field_value=item.primary_field_value,
                    )
                    for item in descriptors
                ],
            )

        @router.get("/content", response_model=BackupContentResponse)
        def content(
            path: str = Query(..., min_length=1),
            entry_id: str = Query(..., min_length=1),
        ) -> BackupContentResponse:
            try:
                text = manager.read_backup_content(path, entry_id)
            except BackupNotFoundError as exc:
                raise HTTPException(status_code=404, detail=str(exc)) from exc
            except BackupRestoreError as exc:
                raise HTTPException(status_code=409, detail=str(exc)) from exc
            return BackupContentResponse(path=path, entry_id=entry_id, content=text)

        @router.post("/snapshot", response_model=SnapshotResponse)
        def snapshot(request: SnapshotRequest) -> SnapshotResponse:
            if request.initial:
                outcome = manager.ensure_initial_backup(request.path, request.content)
            else:
                outcome = manager.ensure_backup(request.path, request.content)
            return SnapshotResponse(path=request.path, outcome=outcome.value)

        @router.post("/restore", response_model=RestoreResponse)
        def restore(request: RestoreRequest) -> RestoreResponse:
            try:
                result: Dict[str, Any] = manager.restore_backup(request.path, request.entry_id)
            except BackupNotFoundError as exc:
                raise HTTPException(status_code=404, detail=str(exc)) from exc
            except BackupRestoreError as exc:
                raise HTTPException(status_code=409, detail=str(exc)) from exc
            return RestoreResponse(
                path=request.path,
                entry_id=request.entry_id,
                safety_backup=result.get("safety_backup"),
            )

        @router.post("/enforce", response_model=CapacityResponse)
        def enforce() -> CapacityResponse:
            summary = manager.enforce_capacity()
            return CapacityResponse(
                changed=summary.changed,
                removed=len(summary.removed),
                freed_bytes=summary.freed_bytes,
                limit_bytes=summary.limit_bytes,
                total_size=summary.total_size,
            )

        return router


def create_app(manager: BackupManager, *, app_version: str = "dev") -> FastAPI:
    app = FastAPI(title="docsnap", version=app_version)
    app.include_router(BackupHistoryService(manager).router())
    return app


__all__ = [
    "BackupContentResponse",
    "BackupEntryModel",
    "BackupHistoryService",
    "BackupListResponse",
    "CapacityResponse",
    "RestoreRequest",
    "RestoreResponse",
    "SnapshotRequest",
    "SnapshotResponse",
    "create_app",
]
