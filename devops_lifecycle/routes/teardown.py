"""Teardown endpoints."""

import logging
from typing import Any

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, status

from devops_lifecycle.context import OrchestratorContext
from devops_lifecycle.errors import OperationInProgressError
from devops_lifecycle.models import (
    FolderOperation,
    OperationKind,
    OperationStatus,
    TeardownMode,
    TeardownRequest,
    TeardownResponse,
    folder_key,
)
from devops_lifecycle.routes.dependencies import get_context

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["teardown"])


async def run_teardown(
    context: OrchestratorContext,
    operation_id: int,
    request: TeardownRequest,
) -> None:
    """Background task: run the teardown and record its outcome in the ledger."""
    database = context.database
    database.update_status(operation_id, OperationStatus.IN_PROGRESS)

    def progress(message: str) -> None:
        database.append_progress(operation_id, message)

    try:
        if request.mode == TeardownMode.REPOSITORY:
            result = await context.folder_teardown().undeploy(
                request.project_id,
                request.compartment_id,
                request.folders[0],
                request.sub_names,
                progress,
            )
        else:
            result = await context.teardown_engine().undeploy(request.folders, progress)
    except Exception as e:
        logger.exception("Teardown of %s failed unexpectedly", folder_key(request.folders))
        database.finish_operation(operation_id, f"Teardown failed: {e}")
        return

    database.finish_operation(operation_id, result.error)
    context.rebuild_tree()


@router.post(
    "/teardown",
    response_model=TeardownResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Tear down folders",
    description="""Delete every cloud resource deployed for the folders.

    In `project` mode the stored progress record is driven to empty tier by
    tier. In `repository` mode a single folder is removed from a DevOps
    project that stays in place for the other folders.""",
    responses={
        202: {"description": "Teardown accepted"},
        404: {"description": "Nothing recorded for the folders"},
        409: {"description": "Another operation is in progress for a folder"},
    },
)
async def start_teardown(
    request: TeardownRequest,
    background_tasks: BackgroundTasks,
    context: OrchestratorContext = Depends(get_context),
) -> TeardownResponse:
    """Start a teardown in the background."""
    key = folder_key(request.folders)

    if request.mode == TeardownMode.PROJECT and context.checkpoints.load(request.folders) is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No deployment recorded for {key}",
        )

    try:
        operation = context.database.begin_operation(key, OperationKind.UNDEPLOY)
    except OperationInProgressError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

    background_tasks.add_task(run_teardown, context, operation.id, request)

    return TeardownResponse(
        folder_key=key,
        operation_id=operation.id,
        status=operation.status,
        message=f"Teardown of {key} started",
    )


@router.get(
    "/teardown/{folder}/status",
    response_model=FolderOperation,
    summary="Get teardown status",
    description="Latest operation recorded for a folder, with its progress log",
)
async def get_teardown_status(
    folder: str,
    context: OrchestratorContext = Depends(get_context),
) -> FolderOperation:
    """Get the latest operation of a folder."""
    operation = context.database.latest_operation(folder)
    if not operation:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No operation recorded for {folder}",
        )
    return operation


@router.get(
    "/checkpoints/{folder}",
    summary="Get progress record",
    description="Progress record stored for a folder",
)
async def get_checkpoint(
    folder: str,
    context: OrchestratorContext = Depends(get_context),
) -> dict[str, Any]:
    """Get the progress record of a folder."""
    try:
        record = context.checkpoints.load(folder)
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to read progress record: {str(e)}",
        )
    if record is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No progress record for {folder}",
        )
    return record
