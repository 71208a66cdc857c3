import logging
from plumbum.commands.modifiers import PipeToLoggerMixin


class Logger(logging.Logger, PipeToLoggerMixin):
    """Logger that can consume plumbum command output (``cmd & logger.pipe_info("prefix")``)"""


logging.setLoggerClass(Logger)
logger = logging.getLogger("rclone-csi")

# kubernetes client logs every request at debug level through urllib3
NOISY_LOGGERS = ("urllib3", "kubernetes")


def init_logging(level):
    level = level.upper()
    logging.basicConfig(
        level=level,
        format="{asctime}|{levelname:7}|{thread:X}|{name:15}| {message}",
        style="{"
    )
    if level != "DEBUG":
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)
