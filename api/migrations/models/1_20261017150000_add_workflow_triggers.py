from tortoise import BaseDBAsyncClient


async def upgrade(db: BaseDBAsyncClient) -> str:
    return """
        ALTER TABLE "workflows" ADD COLUMN IF NOT EXISTS "trigger_config" JSONB NOT NULL DEFAULT '{}'::jsonb;
        CREATE INDEX IF NOT EXISTS "idx_workflows_store_i_trg5e1" ON "workflows" ("store_id", "trigger_type", "is_active");
        ALTER TABLE "purchases" ADD COLUMN IF NOT EXISTS "product_name" VARCHAR(255);
        ALTER TABLE "purchases" ADD COLUMN IF NOT EXISTS "order_id" VARCHAR(100);
        CREATE UNIQUE INDEX IF NOT EXISTS "uid_purchases_store_i_ord7c2" ON "purchases" ("store_id", "order_id");
    """


async def downgrade(db: BaseDBAsyncClient) -> str:
    return """
        DROP INDEX IF EXISTS "uid_purchases_store_i_ord7c2";
        ALTER TABLE "purchases" DROP COLUMN IF EXISTS "order_id";
        ALTER TABLE "purchases" DROP COLUMN IF EXISTS "product_name";
        DROP INDEX IF EXISTS "idx_workflows_store_i_trg5e1";
        ALTER TABLE "workflows" DROP COLUMN IF EXISTS "trigger_config";
    """
