from tortoise import fields, models


class EmailTemplate(models.Model):
    id = fields.IntField(pk=True)
    store_id = fields.CharField(max_length=100, index=True)
    name = fields.CharField(max_length=255)
    subject = fields.CharField(max_length=255)
    html_content = fields.TextField(null=True)
    body = fields.TextField(null=True)
    preview_text = fields.CharField(max_length=255, null=True)
    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:  # type: ignore
        table = "email_templates"


class Workflow(models.Model):
    id = fields.IntField(pk=True)
    store_id = fields.CharField(max_length=100, index=True)
    name = fields.CharField(max_length=255)
    description = fields.TextField(null=True)
    trigger_type = fields.CharField(max_length=50, default="manual")
    trigger_config = fields.JSONField(default=dict)
    is_active = fields.BooleanField(default=True)
    nodes = fields.JSONField(default=list)
    edges = fields.JSONField(default=list)
    version = fields.IntField(default=1)
    created_by = fields.ForeignKeyField(
        "models.User",
        related_name="created_workflows",
        null=True,
        on_delete=fields.SET_NULL,
    )
    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:  # type: ignore
        table = "workflows"
        indexes = (("store_id", "trigger_type", "is_active"),)


class WorkflowRun(models.Model):
    id = fields.IntField(pk=True)
    workflow = fields.ForeignKeyField(
        "models.Workflow",
        related_name="runs",
        null=True,
        on_delete=fields.SET_NULL,
    )
    workflow_version = fields.IntField(null=True)
    store_id = fields.CharField(max_length=100, index=True)
    contact = fields.ForeignKeyField(
        "models.Contact",
        related_name="workflow_runs",
        null=True,
        on_delete=fields.SET_NULL,
    )
    customer_email = fields.CharField(max_length=255, index=True)
    status = fields.CharField(max_length=50, default="running", index=True)
    current_node_id = fields.CharField(max_length=100, null=True)
    next_step_at = fields.DatetimeField(null=True, index=True)
    attempts = fields.IntField(default=0)
    delivery_failures = fields.IntField(default=0)
    execution_data = fields.JSONField(default=dict)
    failure_reason = fields.CharField(max_length=50, null=True)
    stopped_at_node_id = fields.CharField(max_length=100, null=True)
    started_at = fields.DatetimeField(auto_now_add=True)
    completed_at = fields.DatetimeField(null=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:  # type: ignore
        table = "workflow_runs"


class WorkflowRunEvent(models.Model):
    id = fields.IntField(pk=True)
    run = fields.ForeignKeyField(
        "models.WorkflowRun",
        related_name="events",
        on_delete=fields.CASCADE,
    )
    node_id = fields.CharField(max_length=100, null=True)
    event_type = fields.CharField(max_length=50)
    metadata = fields.JSONField(default=dict)
    occurred_at = fields.DatetimeField(auto_now_add=True)

    class Meta:  # type: ignore
        table = "workflow_run_events"
        ordering = ["id"]


class ABTest(models.Model):
    id = fields.IntField(pk=True)
    store_id = fields.CharField(max_length=100, index=True)
    name = fields.CharField(max_length=255)
    split_percentage = fields.IntField(default=50)
    variant_a_template = fields.ForeignKeyField(
        "models.EmailTemplate",
        related_name="ab_tests_as_a",
        on_delete=fields.CASCADE,
    )
    variant_b_template = fields.ForeignKeyField(
        "models.EmailTemplate",
        related_name="ab_tests_as_b",
        on_delete=fields.CASCADE,
    )
    variant_a_delay = fields.JSONField(default=dict)
    variant_b_delay = fields.JSONField(default=dict)
    workflow = fields.ForeignKeyField(
        "models.Workflow",
        related_name="ab_tests",
        null=True,
        on_delete=fields.SET_NULL,
    )
    winner = fields.CharField(max_length=1, null=True)
    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:  # type: ignore
        table = "ab_tests"


class ABTestAssignment(models.Model):
    id = fields.IntField(pk=True)
    test = fields.ForeignKeyField(
        "models.ABTest",
        related_name="assignments",
        on_delete=fields.CASCADE,
    )
    run = fields.OneToOneField(
        "models.WorkflowRun",
        related_name="ab_assignment",
        on_delete=fields.CASCADE,
    )
    subject_key = fields.CharField(max_length=255)
    variant = fields.CharField(max_length=1)
    sent = fields.BooleanField(default=False)
    created_at = fields.DatetimeField(auto_now_add=True)

    class Meta:  # type: ignore
        table = "ab_test_assignments"
