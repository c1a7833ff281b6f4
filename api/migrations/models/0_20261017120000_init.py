from tortoise import BaseDBAsyncClient


async def upgrade(db: BaseDBAsyncClient) -> str:
    return """
        CREATE TABLE IF NOT EXISTS "users" (
    "id" SERIAL NOT NULL PRIMARY KEY,
    "email" VARCHAR(255) NOT NULL UNIQUE,
    "firstname" VARCHAR(100) NOT NULL,
    "lastname" VARCHAR(100),
    "store_id" VARCHAR(100),
    "plan" VARCHAR(50) NOT NULL  DEFAULT 'free',
    "is_admin" BOOL NOT NULL  DEFAULT False,
    "disabled" BOOL NOT NULL  DEFAULT False,
    "created_at" TIMESTAMPTZ NOT NULL  DEFAULT CURRENT_TIMESTAMP,
    "updated_at" TIMESTAMPTZ NOT NULL  DEFAULT CURRENT_TIMESTAMP
);
CREATE INDEX IF NOT EXISTS "idx_users_store_i_5a1c2e" ON "users" ("store_id");
CREATE TABLE IF NOT EXISTS "contacts" (
    "id" SERIAL NOT NULL PRIMARY KEY,
    "store_id" VARCHAR(100) NOT NULL,
    "email" VARCHAR(255) NOT NULL,
    "first_name" VARCHAR(100),
    "last_name" VARCHAR(255),
    "status" VARCHAR(50) NOT NULL  DEFAULT 'subscribed',
    "tags" JSONB NOT NULL,
    "emails_sent" INT NOT NULL  DEFAULT 0,
    "emails_opened" INT NOT NULL  DEFAULT 0,
    "emails_clicked" INT NOT NULL  DEFAULT 0,
    "subscribed_at" TIMESTAMPTZ,
    "last_opened_at" TIMESTAMPTZ,
    "last_clicked_at" TIMESTAMPTZ,
    "custom_fields" JSONB NOT NULL,
    "created_at" TIMESTAMPTZ NOT NULL  DEFAULT CURRENT_TIMESTAMP,
    "updated_at" TIMESTAMPTZ NOT NULL  DEFAULT CURRENT_TIMESTAMP,
    CONSTRAINT "uid_contacts_store_i_8e0f3b" UNIQUE ("store_id", "email")
);
CREATE INDEX IF NOT EXISTS "idx_contacts_store_i_0b7d41" ON "contacts" ("store_id");
CREATE TABLE IF NOT EXISTS "contact_activities" (
    "id" SERIAL NOT NULL PRIMARY KEY,
    "activity_type" VARCHAR(50) NOT NULL,
    "occurred_at" TIMESTAMPTZ NOT NULL  DEFAULT CURRENT_TIMESTAMP,
    "metadata" JSONB NOT NULL,
    "contact_id" INT NOT NULL REFERENCES "contacts" ("id") ON DELETE CASCADE
);
CREATE INDEX IF NOT EXISTS "idx_contact_act_activit_3f9a6d" ON "contact_activities" ("activity_type");
CREATE TABLE IF NOT EXISTS "purchases" (
    "id" SERIAL NOT NULL PRIMARY KEY,
    "store_id" VARCHAR(100) NOT NULL,
    "customer_email" VARCHAR(255) NOT NULL,
    "product_id" VARCHAR(100),
    "course_id" VARCHAR(100),
    "amount_cents" INT NOT NULL  DEFAULT 0,
    "status" VARCHAR(50) NOT NULL  DEFAULT 'completed',
    "created_at" TIMESTAMPTZ NOT NULL  DEFAULT CURRENT_TIMESTAMP
);
CREATE INDEX IF NOT EXISTS "idx_purchases_store_i_77c0aa" ON "purchases" ("store_id");
CREATE INDEX IF NOT EXISTS "idx_purchases_custome_b2e51f" ON "purchases" ("customer_email");
CREATE TABLE IF NOT EXISTS "email_templates" (
    "id" SERIAL NOT NULL PRIMARY KEY,
    "store_id" VARCHAR(100) NOT NULL,
    "name" VARCHAR(255) NOT NULL,
    "subject" VARCHAR(255) NOT NULL,
    "html_content" TEXT,
    "body" TEXT,
    "preview_text" VARCHAR(255),
    "created_at" TIMESTAMPTZ NOT NULL  DEFAULT CURRENT_TIMESTAMP,
    "updated_at" TIMESTAMPTZ NOT NULL  DEFAULT CURRENT_TIMESTAMP
);
CREATE INDEX IF NOT EXISTS "idx_email_templ_store_i_4d2c90" ON "email_templates" ("store_id");
CREATE TABLE IF NOT EXISTS "workflows" (
    "id" SERIAL NOT NULL PRIMARY KEY,
    "store_id" VARCHAR(100) NOT NULL,
    "name" VARCHAR(255) NOT NULL,
    "description" TEXT,
    "trigger_type" VARCHAR(50) NOT NULL  DEFAULT 'manual',
    "is_active" BOOL NOT NULL  DEFAULT True,
    "nodes" JSONB NOT NULL,
    "edges" JSONB NOT NULL,
    "version" INT NOT NULL  DEFAULT 1,
    "created_at" TIMESTAMPTZ NOT NULL  DEFAULT CURRENT_TIMESTAMP,
    "updated_at" TIMESTAMPTZ NOT NULL  DEFAULT CURRENT_TIMESTAMP,
    "created_by_id" INT REFERENCES "users" ("id") ON DELETE SET NULL
);
CREATE INDEX IF NOT EXISTS "idx_workflows_store_i_9a1e5c" ON "workflows" ("store_id");
CREATE TABLE IF NOT EXISTS "workflow_runs" (
    "id" SERIAL NOT NULL PRIMARY KEY,
    "workflow_version" INT,
    "store_id" VARCHAR(100) NOT NULL,
    "customer_email" VARCHAR(255) NOT NULL,
    "status" VARCHAR(50) NOT NULL  DEFAULT 'running',
    "current_node_id" VARCHAR(100),
    "next_step_at" TIMESTAMPTZ,
    "attempts" INT NOT NULL  DEFAULT 0,
    "delivery_failures" INT NOT NULL  DEFAULT 0,
    "execution_data" JSONB NOT NULL,
    "failure_reason" VARCHAR(50),
    "stopped_at_node_id" VARCHAR(100),
    "started_at" TIMESTAMPTZ NOT NULL  DEFAULT CURRENT_TIMESTAMP,
    "completed_at" TIMESTAMPTZ,
    "updated_at" TIMESTAMPTZ NOT NULL  DEFAULT CURRENT_TIMESTAMP,
    "workflow_id" INT REFERENCES "workflows" ("id") ON DELETE SET NULL,
    "contact_id" INT REFERENCES "contacts" ("id") ON DELETE SET NULL
);
CREATE INDEX IF NOT EXISTS "idx_workflow_ru_store_i_1c8b2f" ON "workflow_runs" ("store_id");
CREATE INDEX IF NOT EXISTS "idx_workflow_ru_custome_6e3d07" ON "workflow_runs" ("customer_email");
CREATE INDEX IF NOT EXISTS "idx_workflow_ru_status_0f4a9b" ON "workflow_runs" ("status");
CREATE INDEX IF NOT EXISTS "idx_workflow_ru_next_st_d58e21" ON "workflow_runs" ("next_step_at");
CREATE TABLE IF NOT EXISTS "workflow_run_events" (
    "id" SERIAL NOT NULL PRIMARY KEY,
    "node_id" VARCHAR(100),
    "event_type" VARCHAR(50) NOT NULL,
    "metadata" JSONB NOT NULL,
    "occurred_at" TIMESTAMPTZ NOT NULL  DEFAULT CURRENT_TIMESTAMP,
    "run_id" INT NOT NULL REFERENCES "workflow_runs" ("id") ON DELETE CASCADE
);
CREATE TABLE IF NOT EXISTS "ab_tests" (
    "id" SERIAL NOT NULL PRIMARY KEY,
    "store_id" VARCHAR(100) NOT NULL,
    "name" VARCHAR(255) NOT NULL,
    "split_percentage" INT NOT NULL  DEFAULT 50,
    "variant_a_delay" JSONB NOT NULL,
    "variant_b_delay" JSONB NOT NULL,
    "winner" VARCHAR(1),
    "created_at" TIMESTAMPTZ NOT NULL  DEFAULT CURRENT_TIMESTAMP,
    "updated_at" TIMESTAMPTZ NOT NULL  DEFAULT CURRENT_TIMESTAMP,
    "variant_a_template_id" INT NOT NULL REFERENCES "email_templates" ("id") ON DELETE CASCADE,
    "variant_b_template_id" INT NOT NULL REFERENCES "email_templates" ("id") ON DELETE CASCADE,
    "workflow_id" INT REFERENCES "workflows" ("id") ON DELETE SET NULL
);
CREATE INDEX IF NOT EXISTS "idx_ab_tests_store_i_2b6f8d" ON "ab_tests" ("store_id");
CREATE TABLE IF NOT EXISTS "ab_test_assignments" (
    "id" SERIAL NOT NULL PRIMARY KEY,
    "subject_key" VARCHAR(255) NOT NULL,
    "variant" VARCHAR(1) NOT NULL,
    "sent" BOOL NOT NULL  DEFAULT False,
    "created_at" TIMESTAMPTZ NOT NULL  DEFAULT CURRENT_TIMESTAMP,
    "test_id" INT NOT NULL REFERENCES "ab_tests" ("id") ON DELETE CASCADE,
    "run_id" INT NOT NULL UNIQUE REFERENCES "workflow_runs" ("id") ON DELETE CASCADE
);
CREATE TABLE IF NOT EXISTS "social_integrations" (
    "id" SERIAL NOT NULL PRIMARY KEY,
    "platform" VARCHAR(50) NOT NULL  DEFAULT 'instagram',
    "platform_user_id" VARCHAR(100) NOT NULL,
    "platform_username" VARCHAR(255),
    "access_token" TEXT NOT NULL,
    "is_connected" BOOL NOT NULL  DEFAULT True,
    "created_at" TIMESTAMPTZ NOT NULL  DEFAULT CURRENT_TIMESTAMP,
    "updated_at" TIMESTAMPTZ NOT NULL  DEFAULT CURRENT_TIMESTAMP,
    "user_id" INT NOT NULL REFERENCES "users" ("id") ON DELETE CASCADE
);
CREATE INDEX IF NOT EXISTS "idx_social_inte_platfor_93c1d4" ON "social_integrations" ("platform_user_id");
CREATE TABLE IF NOT EXISTS "automations" (
    "id" SERIAL NOT NULL PRIMARY KEY,
    "name" VARCHAR(255) NOT NULL  DEFAULT 'Untitled',
    "active" BOOL NOT NULL  DEFAULT False,
    "created_at" TIMESTAMPTZ NOT NULL  DEFAULT CURRENT_TIMESTAMP,
    "updated_at" TIMESTAMPTZ NOT NULL  DEFAULT CURRENT_TIMESTAMP,
    "user_id" INT NOT NULL REFERENCES "users" ("id") ON DELETE CASCADE
);
CREATE TABLE IF NOT EXISTS "automation_keywords" (
    "id" SERIAL NOT NULL PRIMARY KEY,
    "word" VARCHAR(255) NOT NULL,
    "automation_id" INT NOT NULL REFERENCES "automations" ("id") ON DELETE CASCADE,
    CONSTRAINT "uid_automation__automat_5f2e7a" UNIQUE ("automation_id", "word")
);
CREATE INDEX IF NOT EXISTS "idx_automation__word_8c4b13" ON "automation_keywords" ("word");
CREATE TABLE IF NOT EXISTS "automation_triggers" (
    "id" SERIAL NOT NULL PRIMARY KEY,
    "type" VARCHAR(20) NOT NULL,
    "automation_id" INT NOT NULL REFERENCES "automations" ("id") ON DELETE CASCADE
);
CREATE TABLE IF NOT EXISTS "automation_listeners" (
    "id" SERIAL NOT NULL PRIMARY KEY,
    "listener" VARCHAR(20) NOT NULL  DEFAULT 'MESSAGE',
    "prompt" TEXT NOT NULL,
    "comment_reply" TEXT,
    "dm_count" INT NOT NULL  DEFAULT 0,
    "comment_count" INT NOT NULL  DEFAULT 0,
    "automation_id" INT NOT NULL UNIQUE REFERENCES "automations" ("id") ON DELETE CASCADE
);
CREATE TABLE IF NOT EXISTS "automation_posts" (
    "id" SERIAL NOT NULL PRIMARY KEY,
    "post_id" VARCHAR(100) NOT NULL,
    "caption" TEXT,
    "media" TEXT,
    "media_type" VARCHAR(20) NOT NULL  DEFAULT 'IMAGE',
    "created_at" TIMESTAMPTZ NOT NULL  DEFAULT CURRENT_TIMESTAMP,
    "automation_id" INT NOT NULL REFERENCES "automations" ("id") ON DELETE CASCADE
);
CREATE INDEX IF NOT EXISTS "idx_automation__post_id_1a9e6c" ON "automation_posts" ("post_id");
CREATE TABLE IF NOT EXISTS "chat_history" (
    "id" SERIAL NOT NULL PRIMARY KEY,
    "sender_id" VARCHAR(100) NOT NULL,
    "receiver_id" VARCHAR(100) NOT NULL,
    "message" TEXT NOT NULL,
    "role" VARCHAR(20) NOT NULL,
    "created_at" TIMESTAMPTZ NOT NULL  DEFAULT CURRENT_TIMESTAMP,
    "automation_id" INT NOT NULL REFERENCES "automations" ("id") ON DELETE CASCADE
);
CREATE INDEX IF NOT EXISTS "idx_chat_histor_sender__4e7b90" ON "chat_history" ("sender_id");
CREATE INDEX IF NOT EXISTS "idx_chat_histor_receive_c3a8f2" ON "chat_history" ("receiver_id");
CREATE TABLE IF NOT EXISTS "aerich" (
    "id" SERIAL NOT NULL PRIMARY KEY,
    "version" VARCHAR(255) NOT NULL,
    "app" VARCHAR(100) NOT NULL,
    "content" JSONB NOT NULL
);"""


async def downgrade(db: BaseDBAsyncClient) -> str:
    return """
        """
