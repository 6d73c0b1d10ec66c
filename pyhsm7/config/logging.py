"""
Logging configuration.

The ``logging`` section of a configuration file sets a level and an output
for the root logger, and optionally for individual modules::

    logging:
        root-level: INFO
        root-output: stderr
        by-module:
            pyhsm7.verify:
                level: DEBUG
                output: /var/log/pyhsm7-verify.log

Outputs are either ``stderr``, ``stdout`` or a file name.
"""

import enum
import logging
import sys
from dataclasses import dataclass
from typing import Dict, Optional, Union

from .api import ConfigurationError, get_and_apply

__all__ = [
    'LogConfig',
    'StdLogOutput',
    'parse_logging_config',
    'logging_setup',
    'DEFAULT_ROOT_LOGGER_LEVEL',
    'LOG_FORMAT_STRING',
]

DEFAULT_ROOT_LOGGER_LEVEL = logging.INFO

LOG_FORMAT_STRING = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


class StdLogOutput(enum.Enum):
    STDERR = enum.auto()
    STDOUT = enum.auto()


LogOutput = Union[StdLogOutput, str]


@dataclass(frozen=True)
class LogConfig:
    level: Union[int, str]
    """
    Logging level, as understood by :meth:`logging.Logger.setLevel`.
    """

    output: LogOutput
    """
    Standard stream or file name to log to.
    """

    @staticmethod
    def parse_output_spec(spec) -> LogOutput:
        if not isinstance(spec, str):
            raise ConfigurationError(
                f"Log output must be a string, not {type(spec).__name__}."
            )
        try:
            return StdLogOutput[spec.upper()]
        except KeyError:
            return spec

    @classmethod
    def from_settings(
        cls, settings: dict, name: str, level_key='level', output_key='output'
    ):
        """
        Read a level and an output from a (sub)dictionary of the logging
        section. The output defaults to standard error.
        """
        if level_key not in settings:
            raise ConfigurationError(
                f"Logging config for '{name}' does not define a log level."
            )
        level = settings[level_key]
        if not isinstance(level, (int, str)):
            raise ConfigurationError(
                f"Log levels must be int or str, not {type(level).__name__}."
            )
        output = get_and_apply(
            settings,
            output_key,
            cls.parse_output_spec,
            default=StdLogOutput.STDERR,
        )
        return cls(level=level, output=output)


def parse_logging_config(log_config_spec) -> Dict[Optional[str], LogConfig]:
    """
    Process the ``logging`` section of a configuration file.

    :param log_config_spec:
        The (parsed) ``logging`` section.
    :return:
        A dictionary mapping logger names to :class:`LogConfig` objects.
        The root logger's configuration is stored under ``None``.
    """
    if not isinstance(log_config_spec, dict):
        raise ConfigurationError('logging config should be a dictionary')

    root_settings = {'root-level': DEFAULT_ROOT_LOGGER_LEVEL, **log_config_spec}
    log_config: Dict[Optional[str], LogConfig] = {
        None: LogConfig.from_settings(
            root_settings, 'root', 'root-level', 'root-output'
        )
    }

    by_module = log_config_spec.get('by-module', {})
    if not isinstance(by_module, dict):
        raise ConfigurationError('logging.by-module should be a dictionary')
    for module, settings in by_module.items():
        if not isinstance(module, str):
            raise ConfigurationError(
                "Keys in logging.by-module should be strings"
            )
        if not isinstance(settings, dict):
            raise ConfigurationError(
                f"Logging config for '{module}' should be a dictionary"
            )
        log_config[module] = LogConfig.from_settings(settings, module)
    return log_config


class NoStackTraceFormatter(logging.Formatter):
    def formatException(self, ei) -> str:
        return ""  # pragma: nocover


def _make_handler(output: LogOutput, verbose: bool) -> logging.Handler:
    if output is StdLogOutput.STDOUT:
        handler = logging.StreamHandler(sys.stdout)
    elif output is StdLogOutput.STDERR:
        handler = logging.StreamHandler(sys.stderr)
    else:
        handler = logging.FileHandler(output)
        handler.setFormatter(logging.Formatter(LOG_FORMAT_STRING))
        return handler
    # no stack traces on the console, unless asked for
    formatter_cls = logging.Formatter if verbose else NoStackTraceFormatter
    handler.setFormatter(formatter_cls(LOG_FORMAT_STRING))
    return handler


def logging_setup(log_configs: Dict[Optional[str], LogConfig], verbose=False):
    """
    Install handlers on the loggers named in a logging configuration.

    :param log_configs:
        Output of :func:`parse_logging_config`.
    :param verbose:
        Include stack traces in console output.
    """
    for module, log_config in log_configs.items():
        cur_logger = logging.getLogger(module)
        cur_logger.setLevel(log_config.level)
        cur_logger.addHandler(_make_handler(log_config.output, verbose))
