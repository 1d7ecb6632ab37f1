"""
Composed FastAPI Dependencies

Route handlers take `Services` and never build services themselves; the
instance is created once in the app lifespan and kept on app.state.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Request

from firm_rag.container import StudyServices
from firm_rag.core.errors import ConfigurationError


def get_services(request: Request) -> StudyServices:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise ConfigurationError("Services are not initialised.")
    return services


Services = Annotated[StudyServices, Depends(get_services)]
