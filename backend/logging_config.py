"""
Logging for the Rare Visual Catalyst backend

Every module logs under the 'catalyst' namespace. Lines carry the session or
job id they belong to, so one generation run or video render can be followed
through gemini_service, fal_service and google_drive with a single grep.

Environment:
    LOG_DIR             directory for the log files (default backend/logs)
    LOG_LEVEL           level of the catalyst loggers (default DEBUG)
    LOG_CONSOLE_LEVEL   console threshold (default INFO)
    LOG_TO_FILE         '0' / 'false' keeps logs on the console only
    LOG_RETENTION_DAYS  rotated files kept (default 7)
"""
import os
import logging
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from typing import Optional

NAMESPACE = 'catalyst'
NO_CONTEXT = '-'

LOG_FORMAT = '%(asctime)s | %(levelname)-8s | %(name)-24s | %(context_id)-8s | %(message)s'
LOG_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

# SDK and HTTP client loggers that flood DEBUG output
NOISY_LOGGERS = ('googleapiclient.discovery_cache', 'google_genai', 'httpx', 'urllib3')

_configured = False


def _env_level(name: str, default: str) -> int:
    level = logging.getLevelName(os.getenv(name, default).upper())
    return level if isinstance(level, int) else logging.getLevelName(default)


def _env_flag(name: str, default: bool = True) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() not in ('0', 'false', 'no', 'off')


class ContextFilter(logging.Filter):
    """Give every record a context_id, '-' when no session/job is attached."""
    def filter(self, record):
        if not getattr(record, 'context_id', None):
            record.context_id = NO_CONTEXT
        return True


class ContextAdapter(logging.LoggerAdapter):
    """Stamps the session or job id onto each record."""
    def process(self, msg, kwargs):
        extra = kwargs.setdefault('extra', {})
        extra.setdefault('context_id', self.extra['context_id'])
        return msg, kwargs


def _file_handler(path: str, level: int, retention_days: int, formatter) -> logging.Handler:
    handler = TimedRotatingFileHandler(
        filename=path,
        when='midnight',
        backupCount=retention_days,
        encoding='utf-8'
    )
    handler.setLevel(level)
    handler.setFormatter(formatter)
    handler.addFilter(ContextFilter())
    return handler


def setup_logging(force: bool = False) -> logging.Logger:
    """
    Configure the catalyst logger tree once per process.

    Writes catalyst.log (everything at LOG_LEVEL), catalyst-errors.log
    (warnings and up) and the console. Pass force=True to rebuild the
    handlers after changing the LOG_* variables.
    """
    global _configured

    root = logging.getLogger(NAMESPACE)
    if _configured and not force:
        return root

    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    root.setLevel(_env_level('LOG_LEVEL', 'DEBUG'))
    root.propagate = False
    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    console = logging.StreamHandler()
    console.setLevel(_env_level('LOG_CONSOLE_LEVEL', 'INFO'))
    console.setFormatter(formatter)
    console.addFilter(ContextFilter())
    root.addHandler(console)

    log_dir = os.getenv('LOG_DIR', os.path.join(os.path.dirname(__file__), 'logs'))
    to_file = _env_flag('LOG_TO_FILE')
    if to_file:
        Path(log_dir).mkdir(parents=True, exist_ok=True)
        retention = int(os.getenv('LOG_RETENTION_DAYS', 7))
        root.addHandler(_file_handler(
            os.path.join(log_dir, f'{NAMESPACE}.log'), logging.DEBUG, retention, formatter))
        root.addHandler(_file_handler(
            os.path.join(log_dir, f'{NAMESPACE}-errors.log'), logging.WARNING, retention, formatter))

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    _configured = True
    root.info(f"Logging ready: level={logging.getLevelName(root.level)}, "
              f"files={'off' if not to_file else log_dir}")
    return root


def get_logger(module_name: str) -> logging.Logger:
    """Module logger, e.g. get_logger('drive') -> 'catalyst.drive'."""
    return logging.getLogger(f'{NAMESPACE}.{module_name}')


def get_request_logger(module_name: str, request_id: Optional[str]) -> ContextAdapter:
    """Module logger that tags every line with a session / job / request id."""
    return ContextAdapter(get_logger(module_name), {'context_id': request_id or NO_CONTEXT})
