"""Device sample sources for the EEG relay and batch summarizer.

BrainFlowBoard owns a BrainFlow board session as a scoped resource: the
session is prepared, configured and started by open() and always stopped
and released by close(), including when setup fails half way. Used as an
async context manager, both run in a worker thread.
"""

import asyncio
from abc import ABC, abstractmethod
from types import TracebackType

import numpy as np
from brainflow.board_shim import BoardIds, BoardShim, BrainFlowInputParams
from brainflow.exit_codes import BrainFlowError

from recorder.config import DeviceSettings
from recorder.exceptions import DeviceSessionError
from recorder.logging import get_logger

logger = get_logger(__name__)


class DeviceSource(ABC):
    """Abstract base class for multi-channel sample sources."""

    @property
    @abstractmethod
    def channel_names(self) -> list[str]:
        """Names of the channels returned by read_latest, in order."""
        ...

    @abstractmethod
    def open(self) -> None:
        """Start streaming. Raises DeviceSessionError on failure."""
        ...

    @abstractmethod
    def close(self) -> None:
        """Stop streaming and release the session. Safe to call twice."""
        ...

    @abstractmethod
    def read_latest(self, n_samples: int) -> list[list[float]]:
        """Return up to ``n_samples`` most recent readings per channel.

        One list per channel, in channel_names order. Returns an empty list
        when the device has produced nothing yet.
        """
        ...

    async def __aenter__(self) -> "DeviceSource":
        await asyncio.to_thread(self.open)
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await asyncio.to_thread(self.close)


def resolve_board_id(name: str) -> int:
    """Map a BoardIds member name (e.g. "MUSE_2_BOARD") to its numeric id."""
    try:
        return BoardIds[name.upper()].value
    except KeyError as exc:
        raise DeviceSessionError(f"Unknown BrainFlow board: {name}") from exc


class BrainFlowBoard(DeviceSource):
    """EEG channels of a BrainFlow-supported board."""

    def __init__(self, settings: DeviceSettings) -> None:
        self._settings = settings
        self._board_id = resolve_board_id(settings.board)

        params = BrainFlowInputParams()
        if settings.serial_port:
            params.serial_port = settings.serial_port
        if settings.mac_address:
            params.mac_address = settings.mac_address

        if settings.enable_board_logger:
            BoardShim.enable_dev_board_logger()

        self._board = BoardShim(self._board_id, params)
        self._eeg_channels: list[int] = BoardShim.get_eeg_channels(self._board_id)
        self._channel_names = self._lookup_channel_names()
        self._streaming = False

    @property
    def board_id(self) -> int:
        return self._board_id

    @property
    def channel_names(self) -> list[str]:
        return list(self._channel_names)

    def _lookup_channel_names(self) -> list[str]:
        try:
            names = list(BoardShim.get_eeg_names(self._board_id))
        except BrainFlowError:
            names = []
        if len(names) != len(self._eeg_channels):
            # Boards without a montage description get positional names
            names = [f"ch{row}" for row in self._eeg_channels]
        return names

    def open(self) -> None:
        logger.info("device_session_opening", board=self._settings.board)
        try:
            self._board.prepare_session()
            if self._settings.config_command:
                self._board.config_board(self._settings.config_command)
            self._board.start_stream(self._settings.buffer_size)
        except BrainFlowError as exc:
            self._release()
            raise DeviceSessionError(
                f"{self._settings.board}: cannot start session: {exc}"
            ) from exc

        self._streaming = True
        logger.info(
            "device_streaming_started",
            board=self._settings.board,
            channels=self._channel_names,
        )

    def close(self) -> None:
        if self._streaming:
            try:
                self._board.stop_stream()
            except BrainFlowError:
                logger.warning("device_stop_stream_failed", exc_info=True)
            self._streaming = False
        self._release()

    def _release(self) -> None:
        try:
            if self._board.is_prepared():
                self._board.release_session()
                logger.info("device_session_released", board=self._settings.board)
        except BrainFlowError:
            logger.warning("device_release_failed", exc_info=True)

    def read_latest(self, n_samples: int) -> list[list[float]]:
        try:
            data = self._board.get_current_board_data(n_samples)
        except BrainFlowError as exc:
            raise DeviceSessionError(f"{self._settings.board}: read failed: {exc}") from exc

        data = np.asarray(data, dtype=float)
        if data.ndim != 2 or data.shape[1] == 0:
            return []
        return [data[row].tolist() for row in self._eeg_channels]
