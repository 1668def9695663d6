"""FastAPI readout application factory."""

from typing import Any

from fastapi import FastAPI

from recorder.readout.routes import api


def create_readout_app(lifespan: Any = None, title: str = "Minute Velocity Recorder") -> FastAPI:
    """Create and configure the readout application.

    Route handlers expect ``app.state.readout`` (LiveReadout),
    ``app.state.controller`` (a cadence controller) and ``app.state.mode``
    to be set, either directly or by the lifespan.

    Args:
        lifespan: Optional async context manager for application lifespan events.
                  Used by main.py to start and stop the controller task.
        title: Title shown in the generated OpenAPI docs.
    """
    app = FastAPI(title=title, lifespan=lifespan)
    app.include_router(api.root_router)
    app.include_router(api.router, prefix="/api")
    return app
