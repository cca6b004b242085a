# This project was developed with assistance from AI tools.
"""Logging setup.

Modules log through ``logging.getLogger(__name__)``; this module only
decides the root level and format once at startup. Payment provider
status is reported here too so a missing webhook secret is visible in the
first lines of the log rather than on the first failed webhook.
"""

import logging

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

# Third-party loggers that are too chatty at INFO.
_QUIET_LOGGERS = ("botocore", "boto3", "urllib3", "stripe")


def configure_logging(level: str = "INFO") -> None:
    """Configure the root logger. Unknown level names fall back to INFO."""
    resolved = logging.getLevelName(level.upper())
    if not isinstance(resolved, int):
        resolved = logging.INFO

    logging.basicConfig(level=resolved, format=LOG_FORMAT)
    logging.getLogger().setLevel(resolved)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(resolved, logging.WARNING))


def log_payment_status() -> None:
    """Log whether webhook signature verification is configured. Call at startup."""
    from .core.config import settings

    if settings.STRIPE_WEBHOOK_SECRET:
        logger.info("Payment webhook: ACTIVE (tolerance=%ds)", settings.STRIPE_WEBHOOK_TOLERANCE)
    else:
        logger.warning("Payment webhook: DISABLED (STRIPE_WEBHOOK_SECRET not configured)")
