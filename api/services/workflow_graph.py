from __future__ import annotations

from typing import Annotated, Any, Iterable, Literal, Union, get_args

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, model_validator

from services.errors import InvalidWorkflowDefinition

NODE_TYPES = (
    "trigger",
    "email",
    "delay",
    "condition",
    "action",
    "stop",
    "webhook",
    "split",
    "notify",
    "goal",
)

TRUE_HANDLES = ("true", "yes")
FALSE_HANDLES = ("false", "no")
BRANCHING_TYPES = {"condition", "split"}

SECONDS_PER_UNIT = {"minutes": 60, "hours": 3600, "days": 86400}


class _NodeData(BaseModel):
    # Unknown keys are kept so definitions round-trip unchanged.
    model_config = ConfigDict(extra="allow", populate_by_name=True)


class EmptyData(_NodeData):
    pass


class EmailData(_NodeData):
    template_id: int | str | None = Field(default=None, alias="templateId")
    # Custom content used when no template is chosen; the editor writes either key.
    subject: str | None = None
    content: str | None = Field(default=None, validation_alias=AliasChoices("content", "body"))
    ab_test_id: int | None = Field(default=None, alias="abTestId")
    variant: str | None = None

    @model_validator(mode="after")
    def _needs_content(self) -> "EmailData":
        if self.template_id in (None, "") and not (self.subject and self.content):
            raise ValueError("email node needs 'templateId' or 'subject' with 'content'")
        return self


class DelayData(_NodeData):
    delay_minutes: float = Field(default=0, ge=0, alias="delayMinutes")
    delay_hours: float = Field(default=0, ge=0, alias="delayHours")
    delay_days: float = Field(default=0, ge=0, alias="delayDays")
    # Older editor payloads store a single value plus a unit (days when omitted).
    delay_value: float | None = Field(default=None, ge=0, validation_alias=AliasChoices("delayValue", "delay"))
    delay_unit: Literal["minutes", "hours", "days"] | None = Field(default=None, alias="delayUnit")

    @property
    def delay_ms(self) -> int:
        seconds = self.delay_days * 86400 + self.delay_hours * 3600 + self.delay_minutes * 60
        if self.delay_value is not None:
            seconds += self.delay_value * SECONDS_PER_UNIT[self.delay_unit or "days"]
        return int(round(seconds * 1000))


class ConditionDescriptor(BaseModel):
    model_config = ConfigDict(extra="allow")

    field: str
    operator: str = "equals"
    value: Any = None


class ConditionData(_NodeData):
    condition: ConditionDescriptor | None = None
    condition_type: str | None = Field(default=None, alias="conditionType")

    @model_validator(mode="after")
    def _requires_condition(self) -> "ConditionData":
        if self.condition is None and not self.condition_type:
            raise ValueError("condition node needs 'condition' or 'conditionType'")
        return self


class WebhookData(_NodeData):
    webhook_url: str = Field(alias="webhookUrl", min_length=1)

    @model_validator(mode="after")
    def _http_only(self) -> "WebhookData":
        if not self.webhook_url.lower().startswith(("http://", "https://")):
            raise ValueError("webhookUrl must be an http(s) URL")
        return self


class GoalData(_NodeData):
    goal_type: str = Field(alias="goalType", min_length=1)
    goal_value: Any = Field(default=None, alias="goalValue")


class SplitData(_NodeData):
    split_percentage: float = Field(default=50, ge=0, le=100, alias="splitPercentage")
    ab_test_id: int | None = Field(default=None, alias="abTestId")


class ActionData(_NodeData):
    action_type: str = Field(default="add_tag", alias="actionType")
    value: str | None = None
    tag_name: str | None = Field(default=None, alias="tagName")


class NotifyData(_NodeData):
    notify_method: str = Field(default="email", alias="notifyMethod")
    message: str = "Workflow notification"
    notify_email: str | None = Field(default=None, alias="notifyEmail")


class _BaseNode(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str


class TriggerNode(_BaseNode):
    type: Literal["trigger"]
    data: EmptyData = Field(default_factory=EmptyData)


class EmailNode(_BaseNode):
    type: Literal["email"]
    data: EmailData


class DelayNode(_BaseNode):
    type: Literal["delay"]
    data: DelayData = Field(default_factory=DelayData)


class ConditionNode(_BaseNode):
    type: Literal["condition"]
    data: ConditionData


class ActionNode(_BaseNode):
    type: Literal["action"]
    data: ActionData = Field(default_factory=ActionData)


class StopNode(_BaseNode):
    type: Literal["stop"]
    data: EmptyData = Field(default_factory=EmptyData)


class WebhookNode(_BaseNode):
    type: Literal["webhook"]
    data: WebhookData


class SplitNode(_BaseNode):
    type: Literal["split"]
    data: SplitData = Field(default_factory=SplitData)


class NotifyNode(_BaseNode):
    type: Literal["notify"]
    data: NotifyData = Field(default_factory=NotifyData)


class GoalNode(_BaseNode):
    type: Literal["goal"]
    data: GoalData


Node = Annotated[
    Union[
        TriggerNode,
        EmailNode,
        DelayNode,
        ConditionNode,
        ActionNode,
        StopNode,
        WebhookNode,
        SplitNode,
        NotifyNode,
        GoalNode,
    ],
    Field(discriminator="type"),
]


class UnknownNode(_BaseNode):
    """Node of a type this service does not know; only produced by lenient parsing."""

    type: str
    data: dict = Field(default_factory=dict)


class Edge(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: str
    source: str
    target: str
    source_handle: str | None = Field(default=None, alias="sourceHandle")
    target_handle: str | None = Field(default=None, alias="targetHandle")


_NODE = TypeAdapter(Node)


def _format_errors(prefix: str, index: int, item: Any, exc: ValidationError) -> list[str]:
    ident = item.get("id") if isinstance(item, dict) else None
    label = f"{prefix} {ident or index}"
    problems: list[str] = []
    for err in exc.errors():
        where = ".".join(str(part) for part in err.get("loc", ()) if not isinstance(part, int))
        problems.append(f"{label}: {where + ': ' if where else ''}{err.get('msg')}")
    return problems


class WorkflowGraph:
    """Typed view over a workflow's stored ``nodes`` / ``edges`` JSON."""

    def __init__(self, nodes: list[Node | UnknownNode], edges: list[Edge]):
        self.nodes = nodes
        self.edges = edges
        self._by_id = {node.id: node for node in nodes}

    @classmethod
    def parse(cls, nodes: list[dict] | None, edges: list[dict] | None, *, strict: bool = True) -> "WorkflowGraph":
        """Parse stored JSON into typed nodes and edges.

        With ``strict=False`` nodes of an unrecognised type are kept as
        :class:`UnknownNode` instead of being rejected, so definitions written
        by a newer editor still run.
        """
        problems: list[str] = []
        parsed_nodes: list[Node | UnknownNode] = []
        parsed_edges: list[Edge] = []
        for index, raw in enumerate(nodes or []):
            try:
                if not strict and isinstance(raw, dict) and raw.get("type") not in NODE_TYPES:
                    parsed_nodes.append(UnknownNode.model_validate(raw))
                else:
                    parsed_nodes.append(_NODE.validate_python(raw))
            except ValidationError as exc:
                problems.extend(_format_errors("node", index, raw, exc))
        for index, raw in enumerate(edges or []):
            try:
                parsed_edges.append(Edge.model_validate(raw))
            except ValidationError as exc:
                problems.extend(_format_errors("edge", index, raw, exc))
        if problems:
            raise InvalidWorkflowDefinition(problems)
        return cls(parsed_nodes, parsed_edges)

    def node(self, node_id: str | None) -> Node | UnknownNode | None:
        if node_id is None:
            return None
        return self._by_id.get(node_id)

    def outgoing(self, node_id: str) -> list[Edge]:
        return [edge for edge in self.edges if edge.source == node_id]

    def edge_for(self, node_id: str, handles: Iterable[str | None] | None = None) -> Edge | None:
        """First edge leaving ``node_id``, optionally restricted to the given handles."""
        candidates = self.outgoing(node_id)
        if handles is None:
            return candidates[0] if candidates else None
        wanted = tuple(handles)
        for edge in candidates:
            if edge.source_handle in wanted:
                return edge
        return None

    def start_node(self) -> Node | UnknownNode | None:
        for node in self.nodes:
            if node.type == "trigger":
                edge = self.edge_for(node.id)
                if edge and self.node(edge.target):
                    return self.node(edge.target)
                break
        for node in self.nodes:
            if node.type != "trigger":
                return node
        return None

    def structural_problems(self) -> list[str]:
        problems: list[str] = []
        seen: set[str] = set()
        for node in self.nodes:
            if node.id in seen:
                problems.append(f"node {node.id}: duplicate node id")
            seen.add(node.id)

        for edge in self.edges:
            if edge.source not in self._by_id:
                problems.append(f"edge {edge.id}: unknown source node {edge.source}")
            if edge.target not in self._by_id:
                problems.append(f"edge {edge.id}: unknown target node {edge.target}")

        for node in self.nodes:
            handles: set[str | None] = set()
            for edge in self.outgoing(node.id):
                if edge.source_handle in handles:
                    label = edge.source_handle or "default"
                    problems.append(f"node {node.id}: more than one outgoing edge for handle '{label}'")
                handles.add(edge.source_handle)
            if node.type == "condition" and None not in handles:
                if not handles.intersection(TRUE_HANDLES):
                    problems.append(f"node {node.id}: condition has no 'true' edge")
                if not handles.intersection(FALSE_HANDLES):
                    problems.append(f"node {node.id}: condition has no 'false' edge")

        cycle_at = self._find_cycle()
        if cycle_at:
            problems.append(f"node {cycle_at}: graph contains a cycle")
        return problems

    def _find_cycle(self) -> str | None:
        adjacency: dict[str, list[str]] = {node.id: [] for node in self.nodes}
        for edge in self.edges:
            if edge.source in adjacency and edge.target in adjacency:
                adjacency[edge.source].append(edge.target)

        state: dict[str, int] = {}
        for root in adjacency:
            if state.get(root):
                continue
            stack = [(root, iter(adjacency[root]))]
            state[root] = 1
            while stack:
                current, children = stack[-1]
                child = next(children, None)
                if child is None:
                    state[current] = 2
                    stack.pop()
                elif state.get(child) == 1:
                    return child
                elif not state.get(child):
                    state[child] = 1
                    stack.append((child, iter(adjacency[child])))
        return None


def validate_definition(nodes: list[dict] | None, edges: list[dict] | None) -> WorkflowGraph:
    """Parse and fully validate a definition before it is saved."""
    graph = WorkflowGraph.parse(nodes, edges)
    problems = graph.structural_problems()
    if problems:
        raise InvalidWorkflowDefinition(problems)
    return graph


# Workflow-level triggers; `manual` workflows are only started through the enroll API.
TriggerType = Literal["manual", "lead_signup", "product_purchase", "tag_added"]
TRIGGER_TYPES = get_args(TriggerType)

# trigger_config keys that narrow a trigger; each is compared with the same key in the event context.
_TRIGGER_FILTERS = {
    "product_purchase": ("productId", "courseId"),
    "tag_added": ("tagName",),
}


def trigger_matches(trigger_type: str, config: dict | None, context: dict) -> bool:
    """A configured filter (e.g. a specific product or tag) must equal the event's value."""
    config = config or {}
    for key in _TRIGGER_FILTERS.get(trigger_type, ()):
        wanted = config.get(key)
        if wanted in (None, ""):
            continue
        actual = context.get(key)
        if actual is None or str(actual).strip().lower() != str(wanted).strip().lower():
            return False
    return True
