"""
Configuration module for the Gent style client
Contains logger setup and environment variables
"""

import os
import logging
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

LOG_FILE = os.getenv("LOG_FILE", "gent_client.log")


# -------------------------
# Logger Setup
# -------------------------
def setup_logger(name: str = __name__, log_file: str = LOG_FILE) -> logging.Logger:
    """
    Set up and return a logger with both file and console handlers

    Args:
        name: Logger name (usually __name__)
        log_file: Path to log file

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)
    logger.setLevel(logging.DEBUG)

    # Avoid adding duplicate handlers
    if logger.handlers:
        return logger

    formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    file_handler = logging.FileHandler(log_file, mode="w")
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(formatter)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.INFO)
    console_handler.setFormatter(formatter)

    logger.addHandler(file_handler)
    logger.addHandler(console_handler)

    return logger


# Create the main application logger
logger = setup_logger("gent_client")

# -------------------------
# Environment Variables
# -------------------------
BACKEND_URL = os.getenv("BACKEND_URL", "http://localhost:8001")

# Client-side deadlines (seconds)
ANALYSIS_TIMEOUT_SECONDS = float(os.getenv("ANALYSIS_TIMEOUT_SECONDS", "30"))
STATUS_TIMEOUT_SECONDS = float(os.getenv("STATUS_TIMEOUT_SECONDS", "10"))
CHAT_TIMEOUT_SECONDS = float(os.getenv("CHAT_TIMEOUT_SECONDS", "30"))
PREVIEW_TIMEOUT_SECONDS = float(os.getenv("PREVIEW_TIMEOUT_SECONDS", "120"))

# local state
STORE_PATH = os.getenv("GENT_STORE_PATH", ".gent_store.json")
CAPTURE_DIR = os.getenv("GENT_CAPTURE_DIR", ".gent_captures")

# phone auth
AUTH_PROVIDER = os.getenv("AUTH_PROVIDER", "auto")
FIREBASE_API_KEY = os.getenv("FIREBASE_API_KEY")

# analytics
POSTHOG_API_KEY = os.getenv("POSTHOG_API_KEY")
POSTHOG_HOST = os.getenv("POSTHOG_HOST", "https://app.posthog.com")


# Log configuration status
logger.info("Configuration loaded successfully")
logger.debug(f"BACKEND_URL: {BACKEND_URL}")
logger.debug(f"AUTH_PROVIDER: {AUTH_PROVIDER}")
logger.debug(f"FIREBASE_API_KEY configured: {bool(FIREBASE_API_KEY)}")
logger.debug(f"POSTHOG_API_KEY configured: {bool(POSTHOG_API_KEY)}")
logger.debug(f"GENT_STORE_PATH: {STORE_PATH}")
