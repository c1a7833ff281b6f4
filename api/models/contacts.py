from tortoise import fields, models


class Contact(models.Model):
    id = fields.IntField(pk=True)
    store_id = fields.CharField(max_length=100, index=True)
    email = fields.CharField(max_length=255)
    first_name = fields.CharField(max_length=100, null=True)
    last_name = fields.CharField(max_length=255, null=True)
    status = fields.CharField(max_length=50, default="subscribed")
    tags = fields.JSONField(default=list)
    emails_sent = fields.IntField(default=0)
    emails_opened = fields.IntField(default=0)
    emails_clicked = fields.IntField(default=0)
    subscribed_at = fields.DatetimeField(null=True)
    last_opened_at = fields.DatetimeField(null=True)
    last_clicked_at = fields.DatetimeField(null=True)
    custom_fields = fields.JSONField(default=dict)
    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:  # type: ignore
        table = "contacts"
        unique_together = (("store_id", "email"),)


class ContactActivity(models.Model):
    id = fields.IntField(pk=True)
    contact = fields.ForeignKeyField(
        "models.Contact",
        related_name="activities",
        on_delete=fields.CASCADE,
    )
    activity_type = fields.CharField(max_length=50)
    occurred_at = fields.DatetimeField(auto_now_add=True)
    metadata = fields.JSONField(default=dict)

    class Meta:  # type: ignore
        table = "contact_activities"


class Purchase(models.Model):
    id = fields.IntField(pk=True)
    store_id = fields.CharField(max_length=100, index=True)
    customer_email = fields.CharField(max_length=255, index=True)
    product_id = fields.CharField(max_length=100, null=True)
    course_id = fields.CharField(max_length=100, null=True)
    product_name = fields.CharField(max_length=255, null=True)
    order_id = fields.CharField(max_length=100, null=True)
    amount_cents = fields.IntField(default=0)
    status = fields.CharField(max_length=50, default="completed")
    created_at = fields.DatetimeField(auto_now_add=True)

    class Meta:  # type: ignore
        table = "purchases"
        unique_together = (("store_id", "order_id"),)
