"""Configuration system using pydantic-settings with environment variable loading."""

from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class PriceSettings(BaseSettings):
    """Price source settings for the live price poller."""

    model_config = SettingsConfigDict(env_prefix="PRICE_")

    exchange_id: str = "binance"  # any ccxt exchange id
    symbol: str = "BTC/USDT"
    backoff_seconds: float = 60.0  # wait after a failed fetch before retrying
    request_timeout_ms: int = 10000


class DeviceSettings(BaseSettings):
    """BrainFlow board settings for the EEG relay and batch summarizer.

    `board` is a BoardIds member name, e.g. MUSE_2_BOARD, MUSE_S_BOARD
    or SYNTHETIC_BOARD for runs without hardware.
    """

    model_config = SettingsConfigDict(env_prefix="DEVICE_")

    board: str = "MUSE_2_BOARD"
    serial_port: str = ""
    mac_address: str = ""
    config_command: str = ""  # e.g. "p61" for Muse high-resolution mode
    buffer_size: int = 45000  # 256 Hz * 60 s * a few minutes of ring buffer
    enable_board_logger: bool = False


class AggregationSettings(BaseSettings):
    """Aggregate-then-bucket cadence configuration.

    The relay reads one sample every 100 ms; the batch summarizer reads one
    second of samples (256 at Muse sampling rates) every second.
    """

    model_config = SettingsConfigDict(env_prefix="AGGREGATION_")

    window_seconds: float = 60.0
    relay_read_interval: float = 0.1
    relay_samples_per_read: int = 1
    batch_read_interval: float = 1.0
    batch_samples_per_read: int = 256
    empty_window_policy: Literal["zero", "carry", "skip"] = "zero"


class StorageSettings(BaseSettings):
    """CSV output locations and in-memory history retention."""

    model_config = SettingsConfigDict(env_prefix="STORAGE_")

    price_csv: str = "btc_velocity.csv"
    relay_csv: str = "muse_relay.csv"
    batch_csv: str = "muse_data.csv"
    history_limit: int = 100  # records kept in memory, the file keeps all


class ReadoutSettings(BaseSettings):
    """Live readout HTTP server configuration."""

    model_config = SettingsConfigDict(env_prefix="READOUT_")

    host: str = "0.0.0.0"
    port: int = 8080
    enabled: bool = True


class AppSettings(BaseSettings):
    """Root application settings, composing all sub-settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
    )

    log_level: str = "INFO"
    log_format: Literal["console", "json"] = "console"
    price: PriceSettings = PriceSettings()
    device: DeviceSettings = DeviceSettings()
    aggregation: AggregationSettings = AggregationSettings()
    storage: StorageSettings = StorageSettings()
    readout: ReadoutSettings = ReadoutSettings()
