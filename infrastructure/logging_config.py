"""
Logging configuration for the charging queue service.

Provides a console handler plus rotating file handlers (main, debug, errors
and a dedicated queue log) under ``logs/latest_log``. Verbosity follows
``PRODUCTION_MODE``.
"""

import logging
import logging.handlers
import os
import shutil
from datetime import datetime
from typing import Optional

# Define the log directory to be a fixed 'latest_log'
LOG_DIR = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), 'logs', 'latest_log')

# Loggers whose records are copied into the dedicated queue log
QUEUE_LOGGERS = (
    'QueueService',
    'QueueStore',
    'PositionRebalancer',
    'ExpiryMonitor',
    'QueueMaintenance',
    'QueueScheduler',
    'SchedulerCore',
    'TaskQueue',
)

SESSION_LOGGERS = (
    'SessionMonitor',
    'SessionGateway',
    'NotificationGateway',
    'NotificationDispatcher',
    'TelegramNotificationDispatcher',
)


def setup_logging(production_mode: Optional[bool] = None, log_dir: str = LOG_DIR) -> None:
    """
    Set up logging with multiple handlers.

    Clears previous logs in ``log_dir`` before starting a new session.

    Args:
        production_mode: Overrides the ``PRODUCTION_MODE`` environment flag
        log_dir: Directory receiving the rotating log files
    """
    if production_mode is None:
        production_mode = os.getenv('PRODUCTION_MODE', 'true').lower() == 'true'

    # Clear previous logs in the directory
    if os.path.exists(log_dir):
        for filename in os.listdir(log_dir):
            file_path = os.path.join(log_dir, filename)
            try:
                if os.path.isfile(file_path) or os.path.islink(file_path):
                    os.unlink(file_path)
                elif os.path.isdir(file_path):
                    shutil.rmtree(file_path)
            except OSError as e:
                print(f'Failed to delete {file_path}. Reason: {e}')

    os.makedirs(log_dir, exist_ok=True)

    main_log_file = os.path.join(log_dir, 'charging.log')
    debug_log_file = os.path.join(log_dir, 'charging_debug.log')
    error_log_file = os.path.join(log_dir, 'charging_errors.log')
    queue_log_file = os.path.join(log_dir, 'queue.log')

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.WARNING if production_mode else logging.DEBUG)
    root_logger.handlers = []

    detailed_formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d in %(funcName)s()] - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    console_formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%H:%M:%S'
    )

    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.WARNING if production_mode else logging.INFO)
    console_handler.setFormatter(console_formatter)
    root_logger.addHandler(console_handler)

    main_file_handler = logging.handlers.RotatingFileHandler(
        main_log_file,
        maxBytes=10*1024*1024,  # 10MB
        backupCount=5,
        encoding='utf-8'
    )
    main_file_handler.setLevel(logging.WARNING if production_mode else logging.INFO)
    main_file_handler.setFormatter(detailed_formatter)
    root_logger.addHandler(main_file_handler)

    # Debug log only in development mode
    if not production_mode:
        debug_file_handler = logging.handlers.RotatingFileHandler(
            debug_log_file,
            maxBytes=50*1024*1024,  # 50MB
            backupCount=3,
            encoding='utf-8'
        )
        debug_file_handler.setLevel(logging.DEBUG)
        debug_file_handler.setFormatter(detailed_formatter)
        root_logger.addHandler(debug_file_handler)

    error_file_handler = logging.handlers.RotatingFileHandler(
        error_log_file,
        maxBytes=5*1024*1024,  # 5MB
        backupCount=5,
        encoding='utf-8'
    )
    error_file_handler.setLevel(logging.ERROR)
    error_file_handler.setFormatter(detailed_formatter)
    root_logger.addHandler(error_file_handler)

    queue_handler = logging.handlers.RotatingFileHandler(
        queue_log_file,
        maxBytes=20*1024*1024,  # 20MB
        backupCount=5,
        encoding='utf-8'
    )
    queue_handler.setLevel(logging.INFO if production_mode else logging.DEBUG)
    queue_handler.setFormatter(detailed_formatter)

    for name in QUEUE_LOGGERS:
        queue_logger = logging.getLogger(name)
        queue_logger.addHandler(queue_handler)
        queue_logger.setLevel(logging.INFO if production_mode else logging.DEBUG)

    for name in SESSION_LOGGERS:
        logging.getLogger(name).setLevel(logging.INFO if production_mode else logging.DEBUG)

    # Reduce noise from external libraries
    logging.getLogger('urllib3').setLevel(logging.WARNING)
    logging.getLogger('httpx').setLevel(logging.WARNING)
    logging.getLogger('telegram').setLevel(logging.INFO)

    root_logger.info("="*80)
    root_logger.info(f"Charging Queue Logging Initialized - {datetime.now()}")
    root_logger.info(f"Production Mode: {'ON' if production_mode else 'OFF'}")
    root_logger.info(f"Log Level: {'WARNING+' if production_mode else 'DEBUG+'}")
    root_logger.info(f"Main log: {main_log_file}")
    if not production_mode:
        root_logger.info(f"Debug log: {debug_log_file}")
    root_logger.info(f"Error log: {error_log_file}")
    root_logger.info(f"Queue log: {queue_log_file}")
    root_logger.info("="*80)


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger with the given name

    Args:
        name: Logger name (usually the component class name)

    Returns:
        logging.Logger instance
    """
    return logging.getLogger(name)
