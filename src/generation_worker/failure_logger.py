import json
import logging
import os
from logging.handlers import RotatingFileHandler
from typing import Any


class JsonFormatter(logging.Formatter):
    def format(self, record):
        log_record = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
        }
        if isinstance(record.msg, dict):
            log_record.update(record.msg)
        else:
            log_record["message"] = record.getMessage()
        return json.dumps(log_record, default=str)


def setup_failure_logger(log_dir: str = "logs") -> logging.Logger:
    """Sets up a dedicated JSON logger for failed generation attempts."""
    logger = logging.getLogger("generation_worker.failures")
    logger.setLevel(logging.INFO)

    # Failures go to their own file, not to the console
    logger.propagate = False

    if any(isinstance(h, RotatingFileHandler) for h in logger.handlers):
        return logger

    os.makedirs(log_dir, exist_ok=True)
    handler = RotatingFileHandler(
        os.path.join(log_dir, "failures.log"),
        maxBytes=5 * 1024 * 1024,  # 5 MB
        backupCount=2,
        encoding="utf-8",
    )
    handler.setFormatter(JsonFormatter())
    logger.addHandler(handler)
    return logger


def log_failure(
    page_id: str,
    model_id: str | None,
    attempt: int,
    error: Exception,
    *,
    tokens_reserved: int | None = None,
    prompt_version: str | None = None,
) -> None:
    """Logs a structured record for a failed generation attempt."""
    # Try to get the raw response from the exception if it exists
    raw_response: Any = None
    response = getattr(error, "response", None)
    if response is not None and hasattr(response, "text"):
        try:
            raw_response = response.text[:2000]
        except Exception:
            raw_response = None

    logging.getLogger("generation_worker.failures").error(
        {
            "page_id": page_id,
            "model": model_id,
            "attempt_number": attempt,
            "tokens_reserved": tokens_reserved,
            "prompt_version": prompt_version,
            "error_type": type(error).__name__,
            "error_message": str(error),
            "raw_response": raw_response,
        }
    )
