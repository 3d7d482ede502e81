"""Internal constants shared across the library."""

USER_AGENT = "pyarova/0.1"

LIVE_SESSION_TABLE = "live_stream_config"
FORECASTS_TABLE = "forecasts"

DEFAULT_FORECAST_TYPE = "arova"

FORECAST_NOTIFICATION_DURATION_MS = 8000
LIVE_SESSION_NOTIFICATION_DURATION_MS = 6000
