from fastapi import HTTPException, Request

from services.automation_dispatcher import AutomationDispatcher
from services.errors import InvalidWorkflowDefinition, RunNotFound, WorkflowError, WorkflowNotFound
from services.workflow_engine import WorkflowEngine


def get_engine(request: Request) -> WorkflowEngine:
    return request.app.state.workflow_engine


def get_dispatcher(request: Request) -> AutomationDispatcher:
    return request.app.state.automation_dispatcher


def http_error(exc: WorkflowError) -> HTTPException:
    if isinstance(exc, InvalidWorkflowDefinition):
        return HTTPException(status_code=422, detail={"message": "Invalid workflow definition", "problems": exc.problems})
    if isinstance(exc, (WorkflowNotFound, RunNotFound)):
        return HTTPException(status_code=404, detail=str(exc))
    return HTTPException(status_code=409, detail=str(exc))
