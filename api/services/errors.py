from __future__ import annotations


class WorkflowError(Exception):
    """Base class for workflow definition and run errors."""


class WorkflowNotFound(WorkflowError):
    def __init__(self, workflow_id: int | None):
        super().__init__(f"Workflow {workflow_id} not found")
        self.workflow_id = workflow_id


class RunNotFound(WorkflowError):
    def __init__(self, run_id: int):
        super().__init__(f"Workflow run {run_id} not found")
        self.run_id = run_id


class InvalidWorkflowDefinition(WorkflowError):
    def __init__(self, problems: list[str]):
        super().__init__("; ".join(problems) or "Invalid workflow definition")
        self.problems = problems
