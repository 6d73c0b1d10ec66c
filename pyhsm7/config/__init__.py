"""
Yaml-based configuration for pyhsm7.

A configuration file looks like this::

    logging:
        root-level: INFO
        by-module:
            pyhsm7.verify:
                level: DEBUG
                output: verify.log
    kms-setups:
        release:
            project-id: my-project
            location-id: europe-west1
            key-ring-id: signing
            key-id: release-key
            cert-file: release.cert.pem
            signed-attributes: false
"""

from dataclasses import dataclass
from typing import Dict, Optional

import yaml

from .api import ConfigurationError
from .kms import KMSKeyConfig
from .logging import LogConfig, parse_logging_config

__all__ = [
    'Pyhsm7Config',
    'parse_config',
    'process_config_dict',
    'ConfigurationError',
]


@dataclass
class Pyhsm7Config:
    log_config: Dict[Optional[str], LogConfig]
    kms_setups: Dict[str, dict]

    def get_kms_config(self, name) -> KMSKeyConfig:
        try:
            setup = self.kms_setups[name]
        except KeyError:
            raise ConfigurationError(f"There's no KMS setup named '{name}'")
        return KMSKeyConfig.from_config(setup)


def parse_config(yaml_str) -> Pyhsm7Config:
    config_dict = yaml.safe_load(yaml_str) or {}
    return Pyhsm7Config(**process_config_dict(config_dict))


def process_config_dict(config_dict: dict) -> dict:
    if not isinstance(config_dict, dict):
        raise ConfigurationError("Configuration should be a dictionary")
    log_config = parse_logging_config(config_dict.get('logging', {}))
    kms_setups = config_dict.get('kms-setups', {})
    if not isinstance(kms_setups, dict):
        raise ConfigurationError("'kms-setups' should be a dictionary")
    return dict(log_config=log_config, kms_setups=kms_setups)
