"""FastAPI application for the DevOps resource lifecycle orchestrator."""

from dotenv import load_dotenv

load_dotenv()

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from devops_lifecycle.context import OrchestratorContext
from devops_lifecycle.routes.resources import router as resources_router
from devops_lifecycle.routes.teardown import router as teardown_router
from devops_lifecycle.settings import get_settings

logger = logging.getLogger(__name__)


def create_app(context: Optional[OrchestratorContext] = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if app.state.context is None:
            app.state.context = OrchestratorContext.from_settings(get_settings())
            app.state.context.rebuild_tree()
        logger.info("Orchestrator ready")
        yield

    app = FastAPI(
        title="DevOps lifecycle orchestrator",
        description="Tear down cloud DevOps projects in dependency order "
        "and browse their resources.",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.context = context

    app.include_router(teardown_router)
    app.include_router(resources_router)

    @app.get("/health", tags=["health"])
    async def health_check() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "healthy"}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
