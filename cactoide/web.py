"""HTML page rendering for Cactoide."""

from __future__ import annotations

from pathlib import Path

from fastapi import Request
from fastapi.templating import Jinja2Templates

from .config import settings
from .schemas import EventRecord, InstanceStatus

templates = Jinja2Templates(directory=Path(__file__).parent / "templates")


def _render(request: Request, template_name: str, context: dict, *, status_code: int = 200):
    return templates.TemplateResponse(
        request,
        template_name,
        {"request": request, "instance_name": settings.instance_name, **context},
        status_code=status_code,
    )


def render_discover(request: Request, events: list[EventRecord]):
    """Render the merged local and federated event listing."""
    return _render(request, "discover.html", {"events": events})


def render_instances(request: Request, instances: list[InstanceStatus]):
    """Render the federated instance dashboard."""
    return _render(request, "instance.html", {"instances": instances})


def render_error(request: Request, status_code: int, message: str | None):
    return _render(
        request,
        "error.html",
        {
            "status_code": status_code,
            "error_message": message or "Something went wrong.",
        },
        status_code=status_code,
    )
