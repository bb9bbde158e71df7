import logging
import sys
from loguru import logger

from config.config import BASE_DIR


def setup_logging(level: str = "INFO"):
    """
    Configures loguru to write to the console and to a rotating file.
    Records from the standard logging module (aiohttp, apscheduler, aiosqlite)
    are routed into loguru as well.
    """
    class InterceptHandler(logging.Handler):
        def emit(self, record):
            logger_opt = logger.opt(depth=6, exception=record.exc_info)
            logger_opt.log(record.levelname, record.getMessage())

    def patcher(record):
        # Records emitted outside of a driver context still need the field for the format string.
        record["extra"].setdefault("driver_id", "System")

    log_format = "{time:YYYY-MM-DD HH:mm:ss} | {level:<8} | {name}:{function}:{line} | driver_id={extra[driver_id]} | {message}"

    logger.configure(
        handlers=[
            {
                "sink": sys.stderr,
                "level": level,
                "format": log_format,
            },
            {
                "sink": BASE_DIR / "logs" / "driver_client.log",
                "level": level,
                "rotation": "10 MB",
                "compression": "zip",
                "enqueue": True,
                "backtrace": True,
                "diagnose": True,
                "format": log_format,
            },
        ],
        patcher=patcher,
        extra={}
    )

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)

    # Noisy libraries only report warnings and above
    logging.getLogger('apscheduler').setLevel(logging.WARNING)
    logging.getLogger('aiosqlite').setLevel(logging.WARNING)
    logging.getLogger('aiohttp.access').setLevel(logging.WARNING)

    return logger
