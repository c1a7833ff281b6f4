import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from tortoise.contrib.fastapi import register_tortoise

from config import Config
from routers.ab_tests import router as ab_tests_router
from routers.auth import router as auth_router
from routers.automations import router as automations_router
from routers.contacts import router as contacts_router
from routers.tracking import router as tracking_router
from routers.users import router as users_router
from routers.webhooks import router as webhooks_router
from routers.workflow_runtime import router as workflow_runtime_router
from routers.workflows import router as workflows_router
from services.automation_dispatcher import AutomationDispatcher
from services.delivery import LiveDelivery
from services.workflow_engine import WorkflowEngine

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    logging.basicConfig(
        level=getattr(logging, Config.LOG_LEVEL, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def init_db(app: FastAPI) -> None:
    register_tortoise(
        app,
        config=Config.TORTOISE_ORM,
        generate_schemas=False,  # schema is owned by Aerich migrations
        add_exception_handlers=True,
    )


def create_app(init_database: bool = True) -> FastAPI:
    configure_logging()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # --- startup ---
        delivery = LiveDelivery()
        app.state.delivery = delivery
        app.state.workflow_engine = WorkflowEngine(delivery)
        # The OpenAI client is created on first Smart AI reply.
        app.state.automation_dispatcher = AutomationDispatcher(delivery)
        logger.info("Delivery adapters ready")
        if not Config.INSTAGRAM_APP_SECRET:
            logger.warning("INSTAGRAM_APP_SECRET is not set; Instagram webhook signatures are not verified")

        yield

        # --- shutdown ---
        await delivery.aclose()

    app = FastAPI(title="Creator Automation API", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[Config.SERVER_URL, Config.PUBLIC_BASE_URL],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(auth_router)
    app.include_router(users_router)
    app.include_router(workflows_router)
    app.include_router(ab_tests_router)
    app.include_router(workflow_runtime_router)
    app.include_router(contacts_router)
    app.include_router(automations_router)
    app.include_router(webhooks_router)
    app.include_router(tracking_router)

    if init_database:
        init_db(app)
    return app
