"""Readout endpoints: latest record, latest EEG channels, history, status and stop."""

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from recorder.logging import get_logger

logger = get_logger(__name__)

root_router = APIRouter()
router = APIRouter()

_NO_DATA = "No data yet"


@root_router.get("/", response_class=PlainTextResponse)
async def index() -> str:
    return "Recorder running"


@router.get("/latest")
async def get_latest_record(request: Request):
    """Most recent accepted Record, or 503 before the first one."""
    record = await request.app.state.readout.record.read()
    if record is None:
        return PlainTextResponse(_NO_DATA, status_code=503)
    return JSONResponse(content=record.to_dict())


@router.get("/eeg/latest")
async def get_latest_channels(request: Request):
    """Newest value of every EEG channel, keyed by channel name."""
    channels = await request.app.state.readout.channels.read()
    if channels is None:
        return PlainTextResponse(_NO_DATA, status_code=503)
    return JSONResponse(content=channels)


@router.get("/history")
async def get_history(request: Request) -> JSONResponse:
    """Records still held in memory, oldest first."""
    controller = request.app.state.controller
    return JSONResponse(content=[r.to_dict() for r in controller.engine.history])


@router.get("/status")
async def get_status(request: Request) -> JSONResponse:
    controller = request.app.state.controller
    status = controller.get_status()
    status["mode"] = request.app.state.mode
    status["data_age_seconds"] = await request.app.state.readout.record.age()
    return JSONResponse(content=status)


@router.post("/stop", response_class=PlainTextResponse)
async def stop_streaming(request: Request) -> str:
    """Stop the controller. The server keeps answering reads."""
    logger.info("stop_requested_over_http")
    request.app.state.controller.stop()
    return "Streaming stopped."
