"""
Populate dataclasses from user-supplied configuration dictionaries, as
read from a Yaml file.

Yaml keys are spelled with hyphens (``key-file``), which are mapped onto the
underscored field names of the dataclass (``key_file``).
"""

import dataclasses
from typing import Callable, Iterable, Set

__all__ = [
    'ConfigurationError',
    'ConfigurableMixin',
    'check_config_keys',
    'enforce_required_keys',
    'get_and_apply',
]


class ConfigurationError(ValueError):
    """Configuration data is missing, unexpected or of the wrong type."""

    def __init__(self, msg: str):
        self.msg = msg
        super().__init__(msg)


def _yaml_key(name: str) -> str:
    return name.replace('_', '-')


def _python_key(name: str) -> str:
    return name.replace('-', '_')


def _plural(keys: Set[str], noun='key') -> str:
    return f"{noun}{'s' if len(keys) > 1 else ''} {', '.join(sorted(keys))}"


def get_and_apply(dictionary: dict, key, function: Callable, *, default=None):
    """
    Apply ``function`` to ``dictionary[key]`` if the key is present,
    otherwise return ``default`` unchanged.
    """
    if key not in dictionary:
        return default
    return function(dictionary[key])


@dataclasses.dataclass(frozen=True)
class ConfigurableMixin:
    """Mixin for dataclasses that can be instantiated from configuration."""

    @classmethod
    def process_entries(cls, config_dict):
        """
        Hook to convert raw configuration values (strings, mostly) into the
        objects the dataclass expects, in place.

        Keys have already been converted to underscored form at this point.
        Overrides must call ``super().process_entries()`` and leave keys they
        do not handle alone.

        :param config_dict:
            A dictionary containing configuration values.
        :raises ConfigurationError:
            if a value cannot be processed.
        """

    @classmethod
    def from_config(cls, config_dict):
        """
        Instantiate the class on which this method is called from a
        configuration dictionary.

        :param config_dict:
            A dictionary containing configuration values, with hyphenated
            keys.
        :return:
            An instance of ``cls``.
        :raises ConfigurationError:
            on unknown or missing keys, or on values that cannot be
            processed.
        """
        fields = dataclasses.fields(cls)
        check_config_keys(cls.__name__, (f.name for f in fields), config_dict)
        kwargs = {_python_key(k): v for k, v in config_dict.items()}
        cls.process_entries(kwargs)
        enforce_required_keys(
            cls.__name__,
            (
                f.name
                for f in fields
                if f.default is dataclasses.MISSING
                and f.default_factory is dataclasses.MISSING
            ),
            kwargs,
        )
        return cls(**kwargs)


def check_config_keys(config_name, expected_keys: Iterable[str], config_dict):
    """
    Reject configuration dictionaries with keys that do not correspond to
    any of ``expected_keys``. Missing keys are dealt with later, by
    :func:`enforce_required_keys`.
    """
    if not isinstance(config_dict, dict):
        raise ConfigurationError(
            f"{config_name} requires a dictionary to initialise."
        )
    unexpected = {_yaml_key(k) for k in config_dict} - {
        _yaml_key(k) for k in expected_keys
    }
    if unexpected:
        raise ConfigurationError(
            f"Unexpected {_plural(unexpected)} in configuration "
            f"for {config_name}."
        )


def enforce_required_keys(
    config_name, required_keys: Iterable[str], config_dict
):
    missing = {_yaml_key(k) for k in required_keys} - {
        _yaml_key(k) for k in config_dict
    }
    if missing:
        raise ConfigurationError(
            f"Missing required {_plural(missing)} in configuration "
            f"for {config_name}."
        )
