"""Utils package for SqlGate."""

from sqlgate.utils.logger import get_logger, preview, redact, setup_logging

__all__ = ["get_logger", "preview", "redact", "setup_logging"]
