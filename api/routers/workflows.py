from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from auth.authenticate import authenticate, ensure_store_access
from models import EmailTemplate, User, Workflow, WorkflowRun, WorkflowRunEvent
from routers.deps import get_engine, http_error
from services.errors import WorkflowError
from services.workflow_engine import Subject, WorkflowEngine, workflow_stats
from services.workflow_graph import TriggerType, validate_definition

router = APIRouter(prefix="/workflows", tags=["workflows"])


class TemplateCreate(BaseModel):
    store_id: str
    name: str
    subject: str
    html_content: str | None = None
    body: str | None = None
    preview_text: str | None = None


class TemplateOut(BaseModel):
    id: int
    store_id: str
    name: str
    subject: str
    preview_text: str | None = None


class WorkflowCreate(BaseModel):
    store_id: str
    name: str
    description: str | None = None
    trigger_type: TriggerType = "manual"
    trigger_config: dict = Field(default_factory=dict)
    is_active: bool = False
    nodes: list[dict] = Field(default_factory=list)
    edges: list[dict] = Field(default_factory=list)


class WorkflowUpdate(BaseModel):
    name: str | None = None
    description: str | None = None
    trigger_type: TriggerType | None = None
    trigger_config: dict | None = None
    nodes: list[dict] | None = None
    edges: list[dict] | None = None


class WorkflowToggle(BaseModel):
    is_active: bool


class WorkflowOut(BaseModel):
    id: int
    store_id: str
    name: str
    description: str | None = None
    trigger_type: str
    trigger_config: dict = Field(default_factory=dict)
    is_active: bool
    version: int
    nodes: list[dict]
    edges: list[dict]


class EnrollRequest(BaseModel):
    customer_email: str
    contact_id: int | None = None
    store_id: str | None = None
    execution_data: dict = Field(default_factory=dict)


class RunOut(BaseModel):
    id: int
    workflow_id: int | None
    customer_email: str
    status: str
    current_node_id: str | None = None
    next_step_at: str | None = None
    attempts: int
    delivery_failures: int
    failure_reason: str | None = None
    stopped_at_node_id: str | None = None
    started_at: str | None = None
    completed_at: str | None = None


class RunHandleOut(BaseModel):
    run_id: int
    status: str
    created: bool


def _workflow_out(workflow: Workflow) -> WorkflowOut:
    return WorkflowOut(
        id=workflow.id,
        store_id=workflow.store_id,
        name=workflow.name,
        description=workflow.description,
        trigger_type=workflow.trigger_type,
        trigger_config=workflow.trigger_config or {},
        is_active=workflow.is_active,
        version=workflow.version,
        nodes=workflow.nodes or [],
        edges=workflow.edges or [],
    )


def _iso(value) -> str | None:
    return value.isoformat() if value else None


def _run_out(run: WorkflowRun) -> RunOut:
    return RunOut(
        id=run.id,
        workflow_id=run.workflow_id,  # type: ignore[attr-defined]
        customer_email=run.customer_email,
        status=run.status,
        current_node_id=run.current_node_id,
        next_step_at=_iso(run.next_step_at),
        attempts=run.attempts,
        delivery_failures=run.delivery_failures,
        failure_reason=run.failure_reason,
        stopped_at_node_id=run.stopped_at_node_id,
        started_at=_iso(run.started_at),
        completed_at=_iso(run.completed_at),
    )


async def _get_workflow(workflow_id: int, user: User) -> Workflow:
    workflow = await Workflow.get_or_none(id=workflow_id)
    if workflow is None:
        raise HTTPException(status_code=404, detail="Workflow not found")
    ensure_store_access(user, workflow.store_id)
    return workflow


async def _get_run(run_id: int, user: User) -> WorkflowRun:
    run = await WorkflowRun.get_or_none(id=run_id)
    if run is None:
        raise HTTPException(status_code=404, detail="Workflow run not found")
    ensure_store_access(user, run.store_id)
    return run


## Templates

@router.post("/templates", response_model=TemplateOut)
async def create_template(payload: TemplateCreate, user: User = Depends(authenticate)):
    ensure_store_access(user, payload.store_id)
    if not (payload.html_content or payload.body):
        raise HTTPException(status_code=400, detail="Template needs html_content or body")
    template = await EmailTemplate.create(**payload.model_dump())
    return TemplateOut(
        id=template.id,
        store_id=template.store_id,
        name=template.name,
        subject=template.subject,
        preview_text=template.preview_text,
    )


@router.get("/templates", response_model=list[TemplateOut])
async def list_templates(store_id: str, user: User = Depends(authenticate)):
    ensure_store_access(user, store_id)
    templates = await EmailTemplate.filter(store_id=store_id).order_by("-created_at")
    return [
        TemplateOut(id=t.id, store_id=t.store_id, name=t.name, subject=t.subject, preview_text=t.preview_text)
        for t in templates
    ]


## Definitions

@router.post("", response_model=WorkflowOut)
async def create_workflow(payload: WorkflowCreate, user: User = Depends(authenticate)):
    ensure_store_access(user, payload.store_id)
    try:
        validate_definition(payload.nodes, payload.edges)
    except WorkflowError as exc:
        raise http_error(exc)
    workflow = await Workflow.create(**payload.model_dump(), created_by=user)
    return _workflow_out(workflow)


@router.get("", response_model=list[WorkflowOut])
async def list_workflows(store_id: str, user: User = Depends(authenticate)):
    ensure_store_access(user, store_id)
    workflows = await Workflow.filter(store_id=store_id).order_by("-updated_at")
    return [_workflow_out(w) for w in workflows]


@router.get("/{workflow_id}", response_model=WorkflowOut)
async def get_workflow(workflow_id: int, user: User = Depends(authenticate)):
    return _workflow_out(await _get_workflow(workflow_id, user))


@router.put("/{workflow_id}", response_model=WorkflowOut)
async def update_workflow(workflow_id: int, payload: WorkflowUpdate, user: User = Depends(authenticate)):
    workflow = await _get_workflow(workflow_id, user)
    changes = payload.model_dump(exclude_unset=True)
    if "nodes" in changes or "edges" in changes:
        nodes = changes.get("nodes", workflow.nodes) or []
        edges = changes.get("edges", workflow.edges) or []
        try:
            validate_definition(nodes, edges)
        except WorkflowError as exc:
            raise http_error(exc)
        workflow.nodes = nodes  # type: ignore[assignment]
        workflow.edges = edges  # type: ignore[assignment]
        workflow.version = (workflow.version or 1) + 1  # type: ignore[assignment]
    for key in ("name", "description", "trigger_type", "trigger_config"):
        if changes.get(key) is not None:
            setattr(workflow, key, changes[key])
    await workflow.save()
    return _workflow_out(workflow)


@router.post("/{workflow_id}/toggle", response_model=WorkflowOut)
async def toggle_workflow(workflow_id: int, payload: WorkflowToggle, user: User = Depends(authenticate)):
    workflow = await _get_workflow(workflow_id, user)
    workflow.is_active = payload.is_active  # type: ignore[assignment]
    await workflow.save(update_fields=["is_active", "updated_at"])
    return _workflow_out(workflow)


## Runs

@router.post("/{workflow_id}/enroll", response_model=RunHandleOut)
async def enroll_subject(
    workflow_id: int,
    payload: EnrollRequest,
    user: User = Depends(authenticate),
    engine: WorkflowEngine = Depends(get_engine),
):
    workflow = await _get_workflow(workflow_id, user)
    subject = Subject(
        customer_email=payload.customer_email,
        store_id=payload.store_id or workflow.store_id,
        contact_id=payload.contact_id,
        execution_data=payload.execution_data,
    )
    try:
        handle = await engine.start(workflow.id, subject)
    except WorkflowError as exc:
        raise http_error(exc)
    return RunHandleOut(run_id=handle.run_id, status=handle.status, created=handle.created)


@router.get("/{workflow_id}/runs", response_model=list[RunOut])
async def list_runs(
    workflow_id: int,
    status: str | None = None,
    limit: int = 100,
    user: User = Depends(authenticate),
):
    workflow = await _get_workflow(workflow_id, user)
    qs = WorkflowRun.filter(workflow=workflow)
    if status:
        qs = qs.filter(status=status)
    runs = await qs.order_by("-id").limit(min(max(limit, 1), 500))
    return [_run_out(r) for r in runs]


@router.get("/{workflow_id}/stats", response_model=dict)
async def get_workflow_stats(workflow_id: int, user: User = Depends(authenticate)):
    workflow = await _get_workflow(workflow_id, user)
    return await workflow_stats(workflow)


@router.get("/runs/{run_id}", response_model=RunOut)
async def get_run(run_id: int, user: User = Depends(authenticate)):
    return _run_out(await _get_run(run_id, user))


@router.post("/runs/{run_id}/cancel", response_model=RunHandleOut)
async def cancel_run(run_id: int, user: User = Depends(authenticate), engine: WorkflowEngine = Depends(get_engine)):
    run = await _get_run(run_id, user)
    try:
        handle = await engine.cancel(run.id)
    except WorkflowError as exc:
        raise http_error(exc)
    return RunHandleOut(run_id=handle.run_id, status=handle.status, created=handle.created)


@router.post("/runs/{run_id}/skip-delay", response_model=RunHandleOut)
async def skip_run_delay(run_id: int, user: User = Depends(authenticate), engine: WorkflowEngine = Depends(get_engine)):
    run = await _get_run(run_id, user)
    try:
        handle = await engine.skip_delay(run.id)
    except WorkflowError as exc:
        raise http_error(exc)
    return RunHandleOut(run_id=handle.run_id, status=handle.status, created=handle.created)


@router.get("/runs/{run_id}/events", response_model=list[dict])
async def list_run_events(run_id: int, user: User = Depends(authenticate)):
    run = await _get_run(run_id, user)
    events = await WorkflowRunEvent.filter(run=run).order_by("id")
    return [
        {
            "id": e.id,
            "node_id": e.node_id,
            "event_type": e.event_type,
            "metadata": e.metadata,
            "occurred_at": _iso(e.occurred_at),
        }
        for e in events
    ]
