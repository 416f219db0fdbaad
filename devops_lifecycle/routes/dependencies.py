from fastapi import Request

from devops_lifecycle.context import OrchestratorContext


def get_context(request: Request) -> OrchestratorContext:
    return request.app.state.context
