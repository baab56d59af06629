'''
Logger centralisé du service GeoSearch.

Loguru est configuré une seule fois à l'import : console colorée, plus un
fichier par niveau avec rotation journalière.
'''

import os
import sys

from loguru import logger

from geosearch.config import settings

LOG_FORMAT_CONSOLE = (
    "<white>{time:YYYY-MM-DD HH:mm:ss.SSS}</white> | "
    "<level>{level: <8}</level> | "
    "<light-black>{name}:{function}:{line}</light-black> - "
    "<level><b>{message}</b></level>"
)
LOG_FORMAT_FILE = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} - {message}"

# (fichier, niveau minimal, niveaux acceptés ; None = tous à partir du minimum)
FILE_SINKS = (
    ("debug.log", "DEBUG", ("DEBUG",)),
    ("info.log", "INFO", ("INFO", "WARNING")),
    ("error.log", "ERROR", None),
)


def _level_filter(levels):
    if levels is None:
        return None
    return lambda record: record["level"].name in levels


def setup_logger(log_dir: str = settings.LOG_DIR, level: str = settings.LOG_LEVEL):
    """Remplace le handler par défaut de loguru par les sorties du service."""
    os.makedirs(log_dir, exist_ok=True)
    logger.remove()

    logger.add(
        sys.stderr,
        level=level,
        format=LOG_FORMAT_CONSOLE,
        colorize=True,
        backtrace=True,
        diagnose=True,
    )

    for filename, min_level, levels in FILE_SINKS:
        logger.add(
            os.path.join(log_dir, filename),
            level=min_level,
            format=LOG_FORMAT_FILE,
            rotation="00:00",
            retention="30 days",
            compression="zip",
            encoding="utf-8",
            filter=_level_filter(levels),
            backtrace=min_level == "ERROR",
            # pas de valeurs de variables (coordonnées, filtres) dans les fichiers
            diagnose=False,
        )
    return logger


setup_logger()
