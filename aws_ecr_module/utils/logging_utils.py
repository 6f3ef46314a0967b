"""
Logging configuration for the ECR repository module tooling.

The CDK app and the provisioning harness log through the standard logging
module. Entry points call configure_logging() once to attach a JSON
formatter to the root logger, with the level taken from LOG_LEVEL.
"""

import logging
import os

from pythonjsonlogger import jsonlogger

LOG_LEVEL_MAP = {
	'DEBUG': logging.DEBUG,
	'INFO': logging.INFO,
	'WARNING': logging.WARNING,
	'ERROR': logging.ERROR,
	'CRITICAL': logging.CRITICAL,
}


def get_log_level(default: str = 'INFO') -> int:
	"""Return the logging level named by the LOG_LEVEL environment variable."""
	log_level_str = os.environ.get('LOG_LEVEL', default)
	return LOG_LEVEL_MAP.get(log_level_str.upper(), logging.INFO)


def configure_logging() -> logging.Logger:
	"""
	Configure the root logger with structured JSON output.

	Calling this more than once does not add duplicate handlers.

	Returns:
	    The root logger
	"""
	logger = logging.getLogger()
	logger.setLevel(get_log_level())

	for handler in logger.handlers:
		if isinstance(handler.formatter, jsonlogger.JsonFormatter):
			return logger

	log_handler = logging.StreamHandler()
	formatter = jsonlogger.JsonFormatter('%(asctime)s %(levelname)s %(name)s %(message)s', datefmt='%Y-%m-%d %H:%M:%S')
	log_handler.setFormatter(formatter)
	logger.addHandler(log_handler)

	return logger
