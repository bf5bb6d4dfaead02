# backend/logging_config.py
import logging.config
import os


def configure_logging(level='INFO', log_dir=None):
    handlers = {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'default',
            'stream': 'ext://sys.stderr',
        },
    }
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        handlers['file'] = {
            'class': 'logging.handlers.TimedRotatingFileHandler',
            'formatter': 'default',
            'filename': os.path.join(log_dir, 'application.log'),
            'when': 'midnight',
            'backupCount': 14,
            'encoding': 'utf-8',
        }
    logging.config.dictConfig({
        'version': 1,
        'disable_existing_loggers': False,
        'formatters': {
            'default': {
                'format': '%(asctime)s %(levelname)s [%(name)s] %(message)s',
                'datefmt': '%Y-%m-%d %H:%M:%S',
            },
        },
        'handlers': handlers,
        'root': {'level': level, 'handlers': list(handlers)},
    })
