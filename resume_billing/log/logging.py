import sys
import os
import inspect
import logging
from logging import StreamHandler

from datadog_api_client.v2 import ApiClient, Configuration
from datadog_api_client.v2.api.logs_api import LogsApi
from datadog_api_client.v2.model.content_encoding import ContentEncoding
from datadog_api_client.v2.model.http_log import HTTPLog
from datadog_api_client.v2.model.http_log_item import HTTPLogItem
from loguru import logger as loguru_logger

# stdlib record attributes that are not user supplied context
_RESERVED_RECORD_KEYS = {
    'args', 'asctime', 'created', 'exc_info', 'exc_text', 'filename',
    'funcName', 'id', 'levelname', 'levelno', 'lineno', 'module',
    'msecs', 'message', 'msg', 'name', 'pathname', 'process',
    'processName', 'relativeCreated', 'stack_info', 'thread', 'threadName',
    'taskName',
}


def get_request_id_for_logging() -> str:
    """
    Return the request ID bound to the current context, or a placeholder.

    The middleware module is imported lazily because it imports this module.
    """
    from resume_billing.middleware.request_id import get_request_id
    request_id = get_request_id()
    return request_id if request_id else "no-request-id"


class LogConfig:
    def __init__(self):
        self.environment = os.getenv('ENVIRONMENT', 'development')
        self.service = os.getenv('SERVICE_NAME', 'resume-billing')
        self.hostname = os.getenv('HOSTNAME', 'unknown')
        self.loglevel = os.getenv('LOGLEVEL', 'INFO')
        self.loglevel_dd = os.getenv('LOGLEVEL_DATADOG', 'ERROR')


logconfig = LogConfig()


class InterceptHandler(logging.Handler):
    """Route stdlib logging records (uvicorn, sqlalchemy) into loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: str | int = loguru_logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Walk back to the frame that issued the logging call
        frame, depth = inspect.currentframe(), 0
        while frame:
            filename = frame.f_code.co_filename
            is_logging = filename == logging.__file__
            is_frozen = "importlib" in filename and "_bootstrap" in filename
            if depth > 0 and not (is_logging or is_frozen):
                break
            frame = frame.f_back
            depth += 1

        extra = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _RESERVED_RECORD_KEYS
        }
        loguru_logger.opt(depth=depth, exception=record.exc_info).bind(**extra).log(
            level, record.getMessage()
        )


class DatadogHandler(StreamHandler):
    """Ships loguru records to the Datadog logs intake."""

    def __init__(self):
        super().__init__()
        self.api_client = ApiClient(Configuration())
        self.api_instance = LogsApi(self.api_client)

    def emit(self, record):
        extra = {}
        for key, value in getattr(record, "extra", {}).items():
            try:
                extra[key] = str(value)
            except Exception:
                continue

        request_id = extra.pop("request_id", get_request_id_for_logging())

        item = HTTPLogItem(
            status=record.levelname,
            ddsource="loguru",
            ddtags=f"level:{record.levelname},env:{logconfig.environment}",
            message=self.format(record),
            service=logconfig.service,
            hostname=logconfig.hostname,
            timestamp=str(record.created),
            request_id=request_id,
            **extra,
        )
        self.api_instance.submit_log(content_encoding=ContentEncoding.DEFLATE, body=HTTPLog([item]))


def request_id_patcher(record):
    """Loguru patcher that stamps every record with the current request ID."""
    record["extra"]["request_id"] = get_request_id_for_logging()


def init_logging():
    try:
        loguru_logger.remove()
        loguru_logger.configure(patcher=request_id_patcher)

        loguru_logger.add(
            sys.stdout,
            format="<green>{time:YYYY-MM-DD HH:mm:ss.SSS Z}</green> | "
                   "<level>{level: <8}</level> | "
                   "<blue>[{extra[request_id]}]</blue> | "
                   "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
                   "<level>{message}</level> | <level>{extra}</level>",
            level=logconfig.loglevel
        )

        dd_api_key = os.getenv("DD_API_KEY")
        if dd_api_key and len(dd_api_key) > 1:
            loguru_logger.add(DatadogHandler(), level=logconfig.loglevel_dd)
        else:
            loguru_logger.warning("Datadog API key is not set. Logging to console only.")

        return loguru_logger
    except Exception as e:
        print(f"Failed to initialize logging: {e}")
        loguru_logger.remove()
        loguru_logger.add(sys.stdout, format="{time} | {level} | {message}", level="DEBUG")
        return loguru_logger


logger = init_logging()
