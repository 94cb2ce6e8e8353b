"""Logging configuration for the application"""
import logging
from typing import Optional

from igbridge.core.config import settings

def setup_logging():
    """Configure logging for the application"""
    LOG_LEVEL = settings.LOG_LEVEL.upper()
    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL, logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
        force=True
    )

    # Silence noisy third-party libraries
    logging.getLogger("stripe").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("urllib3.connectionpool").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def mask_token(token: Optional[str], visible: int = 8) -> str:
    """Shorten a secret for log output, e.g. 'EAABsbCS...(212 chars)'"""
    if not token:
        return "<none>"
    if len(token) <= visible:
        return "*" * len(token)
    return f"{token[:visible]}...({len(token)} chars)"

# Commonly used loggers
instagram_logger = logging.getLogger("instagram")
oauth_logger = logging.getLogger("oauth")
token_refresh_logger = logging.getLogger("token_refresh")
license_logger = logging.getLogger("license")
security_logger = logging.getLogger("security")
