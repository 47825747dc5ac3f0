"""Network configuration constants for the BioBoost API."""

DEFAULT_HOST: str = "0.0.0.0"
DEFAULT_PORT: int = 8000
REQUEST_TIMEOUT_SECONDS: float = 10.0
