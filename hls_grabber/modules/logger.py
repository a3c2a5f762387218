import os
import sys
import logging

loggers = {}
LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"


def is_android():
    """Detects if the script is running on an Android device."""
    return "ANDROID_ROOT" in os.environ and "ANDROID_DATA" in os.environ


def get_log_file_path(filename="hls_grabber.log"):
    """Returns a valid log file path that works on Android and other OS."""
    if is_android():
        return os.path.join(os.environ["HOME"], filename)  # Internal app storage
    return filename  # Default for Linux, Windows, Mac


def setup_logger(name, log_file=None, level=logging.WARNING):
    """Creates or updates a logger for a specific component."""
    if name in loggers:
        logger = loggers[name]
        logger.setLevel(level)

        file_handler_exists = any(isinstance(h, logging.FileHandler) for h in logger.handlers)
        if log_file and not file_handler_exists:
            fh = logging.FileHandler(get_log_file_path(log_file), mode='a')
            fh.setFormatter(logging.Formatter(LOG_FORMAT))
            logger.addHandler(fh)

        return logger

    logger = logging.getLogger(name)
    logger.setLevel(level)

    if not any(isinstance(h, logging.StreamHandler) for h in logger.handlers):
        ch = logging.StreamHandler(sys.stderr)
        ch.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(ch)

    if log_file:
        log_file = get_log_file_path(log_file)
        if not hasattr(sys, '_hls_grabber_first_run'):
            sys._hls_grabber_first_run = True
            file_mode = 'w'
        else:
            file_mode = 'a'
        fh = logging.FileHandler(log_file, mode=file_mode)
        fh.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(fh)

    loggers[name] = logger
    return logger
