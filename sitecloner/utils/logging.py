"""Logging setup: stage-aware formatter for pipeline log lines."""

import logging
import sys


class ContextFormatter(logging.Formatter):
    """Formatter that tolerates records without job/stage extras."""

    def format(self, record: logging.LogRecord) -> str:
        if not hasattr(record, "job_id"):
            record.job_id = "-"
        if not hasattr(record, "stage"):
            record.stage = "-"
        return super().format(record)


def configure_logging(level: int = logging.INFO) -> None:
    """Install the pipeline formatter on the root logger."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        ContextFormatter(
            "%(asctime)s %(levelname)s %(name)s [job=%(job_id)s stage=%(stage)s]: %(message)s",
            datefmt="%H:%M:%S",
        )
    )
    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level)
    logging.getLogger("LiteLLM").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
