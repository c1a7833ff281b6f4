from tortoise import fields, models


class SocialIntegration(models.Model):
    id = fields.IntField(pk=True)
    user = fields.ForeignKeyField(
        "models.User",
        related_name="integrations",
        on_delete=fields.CASCADE,
    )
    platform = fields.CharField(max_length=50, default="instagram")
    platform_user_id = fields.CharField(max_length=100, index=True)
    platform_username = fields.CharField(max_length=255, null=True)
    access_token = fields.TextField()
    is_connected = fields.BooleanField(default=True)
    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:  # type: ignore
        table = "social_integrations"


class Automation(models.Model):
    id = fields.IntField(pk=True)
    user = fields.ForeignKeyField(
        "models.User",
        related_name="automations",
        on_delete=fields.CASCADE,
    )
    name = fields.CharField(max_length=255, default="Untitled")
    active = fields.BooleanField(default=False)
    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:  # type: ignore
        table = "automations"


class AutomationKeyword(models.Model):
    id = fields.IntField(pk=True)
    automation = fields.ForeignKeyField(
        "models.Automation",
        related_name="keywords",
        on_delete=fields.CASCADE,
    )
    word = fields.CharField(max_length=255, index=True)

    class Meta:  # type: ignore
        table = "automation_keywords"
        unique_together = (("automation", "word"),)


class AutomationTrigger(models.Model):
    id = fields.IntField(pk=True)
    automation = fields.ForeignKeyField(
        "models.Automation",
        related_name="triggers",
        on_delete=fields.CASCADE,
    )
    type = fields.CharField(max_length=20)

    class Meta:  # type: ignore
        table = "automation_triggers"


class AutomationListener(models.Model):
    id = fields.IntField(pk=True)
    automation = fields.OneToOneField(
        "models.Automation",
        related_name="listener",
        on_delete=fields.CASCADE,
    )
    listener = fields.CharField(max_length=20, default="MESSAGE")
    prompt = fields.TextField(default="")
    comment_reply = fields.TextField(null=True)
    dm_count = fields.IntField(default=0)
    comment_count = fields.IntField(default=0)

    class Meta:  # type: ignore
        table = "automation_listeners"


class AutomationPost(models.Model):
    id = fields.IntField(pk=True)
    automation = fields.ForeignKeyField(
        "models.Automation",
        related_name="posts",
        on_delete=fields.CASCADE,
    )
    post_id = fields.CharField(max_length=100, index=True)
    caption = fields.TextField(null=True)
    media = fields.TextField(null=True)
    media_type = fields.CharField(max_length=20, default="IMAGE")
    created_at = fields.DatetimeField(auto_now_add=True)

    class Meta:  # type: ignore
        table = "automation_posts"


class ChatHistory(models.Model):
    id = fields.IntField(pk=True)
    automation = fields.ForeignKeyField(
        "models.Automation",
        related_name="chat_history",
        on_delete=fields.CASCADE,
    )
    sender_id = fields.CharField(max_length=100, index=True)
    receiver_id = fields.CharField(max_length=100, index=True)
    message = fields.TextField()
    role = fields.CharField(max_length=20)
    created_at = fields.DatetimeField(auto_now_add=True)

    class Meta:  # type: ignore
        table = "chat_history"
        ordering = ["id"]
