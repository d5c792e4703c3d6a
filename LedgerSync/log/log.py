import collections
import logging
import os
import sys

from PySide6.QtCore import QtMsgType, qInstallMessageHandler

from ..signals import signals

#: Environment variable overriding the default log level, e.g. ``INFO``
LOG_LEVEL_ENV_KEY = 'LEDGERSYNC_LOG_LEVEL'

LOG_LEVEL = logging.DEBUG
LOG_FORMAT = '[%(asctime)s] <%(threadName)s:%(module)s> %(levelname)s:  %(message)s'
LOG_DATEFMT = '%Y-%m-%d %H:%M:%S'

#: Records kept in memory, oldest dropped first
TANK_CAPACITY = 5000

#: Third-party loggers that are too chatty at debug level
NOISY_LOGGERS = (
    'googleapiclient.discovery',
    'googleapiclient.discovery_cache',
    'google_auth_httplib2',
    'urllib3',
    'werkzeug',
)


def resolve_level(level):
    """
    Resolve a level given as an int or a level name.

    Args:
        level (int | str): A standard logging level, or its name, e.g. 'INFO'.

    Returns:
        int: The numeric level.

    Raises:
        ValueError: If the level is not one of the standard levels.
    """
    if isinstance(level, str):
        mapping = logging.getLevelNamesMapping()
        if level.upper() not in mapping:
            raise ValueError(f'Unknown logging level name: {level}')
        level = mapping[level.upper()]
    if isinstance(level, bool) or not isinstance(level, int):
        raise ValueError('Logging level must be an integer or a level name.')
    if level not in (
            logging.DEBUG,
            logging.INFO,
            logging.WARNING,
            logging.ERROR,
            logging.CRITICAL,
    ):
        raise ValueError('Invalid logging level. Use one of the standard logging levels, e.g., logging.DEBUG.')
    return level


def set_logging_level(level):
    """
    Sets the logging level for the root logger and its handlers.

    Args:
        level (int | str): The logging level to set.
    """
    level = resolve_level(level)
    logging.getLogger().setLevel(level)
    for handler in logging.getLogger().handlers:
        handler.setLevel(level)


def default_level():
    """The level from the environment, falling back to LOG_LEVEL when unset or invalid."""
    value = os.environ.get(LOG_LEVEL_ENV_KEY, '').strip()
    if not value:
        return LOG_LEVEL
    try:
        return resolve_level(value)
    except ValueError:
        return LOG_LEVEL


def qt_message_handler(mode, context, message):
    """
    Converts Qt messages to standard Python logging.
    """
    logger = logging.getLogger('Qt')
    message = message.strip()

    if mode == QtMsgType.QtDebugMsg:
        logger.debug(message)
    elif mode == QtMsgType.QtInfoMsg:
        logger.info(message)
    elif mode == QtMsgType.QtWarningMsg:
        logger.warning(message)
    elif mode == QtMsgType.QtCriticalMsg:
        logger.error(message)
    elif mode == QtMsgType.QtFatalMsg:
        logger.critical(message)
        sys.exit(1)


def setup_logging(enable_stream_handler=True, enable_qt_handler=True, log_level=None):
    """
    Configures the root logger with a stdout handler and the in-memory tank.

    Args:
        enable_stream_handler (bool): Log to stdout.
        enable_qt_handler (bool): Route Qt messages through Python logging.
        log_level (int | str, optional): Level for the root logger and its handlers.
            Defaults to the LEDGERSYNC_LOG_LEVEL environment variable, else DEBUG.
    """
    level = default_level() if log_level is None else resolve_level(log_level)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATEFMT)

    if enable_stream_handler:
        stream_handler = logging.StreamHandler(sys.stdout)
        stream_handler.setFormatter(formatter)
        stream_handler.setLevel(level)
        root_logger.addHandler(stream_handler)

    tank_handler = TankHandler()
    tank_handler.setFormatter(formatter)
    tank_handler.setLevel(level)
    root_logger.addHandler(tank_handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    if enable_qt_handler:
        qInstallMessageHandler(qt_message_handler)


def get_tank():
    """Return the TankHandler installed on the root logger, if any."""
    return next(
        (h for h in logging.getLogger().handlers if isinstance(h, TankHandler)), None
    )


class TankHandler(logging.Handler):
    """
    Keeps formatted log records in memory so a session can be reviewed afterwards.

    Background pushes report their failures only through logging, so the tank is
    where they end up. Records arrive from worker threads, all access goes through
    the handler lock.

    Attributes:
        tank (collections.deque[tuple[int, str]]): Log level and formatted message
            of each record, at most ``capacity`` entries.
    """

    def __init__(self, capacity=TANK_CAPACITY):
        super().__init__()
        self.tank = collections.deque(maxlen=capacity)

    def emit(self, record):
        """
        Stores the formatted record. Errors and worse also raise ``showLogs``.

        Args:
            record (logging.LogRecord): The log record to be processed.
        """
        try:
            message = self.format(record)
            with self.lock:
                self.tank.append((record.levelno, message))
            if record.levelno >= logging.ERROR:
                signals.showLogs.emit()
        except (Exception, KeyboardInterrupt):
            self.handleError(record)

    def get_logs(self, level=logging.NOTSET, contains=None):
        """
        Returns the stored messages at or above a level.

        Args:
            level (int, optional): The minimum logging level. Defaults to logging.NOTSET.
            contains (str, optional): Only return messages containing this text.

        Returns:
            list[str]: The matching formatted messages, oldest first.
        """
        with self.lock:
            records = list(self.tank)
        return [
            msg for lvl, msg in records
            if lvl >= level and (contains is None or contains in msg)
        ]

    def clear_logs(self):
        with self.lock:
            self.tank.clear()
