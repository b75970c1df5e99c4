"""
Instance Registry

Loads and validates instance configurations from config.json.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, Iterable, Iterator, List, Optional, Tuple
import json
from pathlib import Path

from loguru import logger

from .config import AggregatorSettings
from .contracts import InstanceDescriptor
from .errors import ConfigurationError


DEFAULT_CONFIG_PATH = Path('config.json')


def validate_descriptors(descriptors: Iterable[InstanceDescriptor]) -> Tuple[InstanceDescriptor, ...]:
    """
    Check that every instance name is non-empty and unique.

    Raises ConfigurationError on the first violation.
    """
    seen = set()
    validated = []
    for descriptor in descriptors:
        name = descriptor.name
        if not name or not name.strip():
            raise ConfigurationError("Instance name must be non-empty")
        if name in seen:
            raise ConfigurationError(f"Duplicate instance name: {name!r}")
        seen.add(name)
        validated.append(descriptor)
    return tuple(validated)


@dataclass
class InstanceRegistry:
    """
    Registry of all configured chat instances.

    Loads from config.json and keeps the configured order.
    """

    _instances: Dict[str, InstanceDescriptor]
    _settings: AggregatorSettings

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> 'InstanceRegistry':
        """Load registry from a JSON config file."""
        path = Path(config_path) if config_path is not None else DEFAULT_CONFIG_PATH

        try:
            with open(path, 'r', encoding='utf-8') as f:
                config = json.load(f)
        except FileNotFoundError as e:
            raise ConfigurationError(f"Config file not found: {path}") from e
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Config file is not valid JSON: {path}: {e}") from e

        registry = cls.from_dict(config)
        logger.debug(f"Loaded {registry.count} instance(s) from {path}")
        return registry

    @classmethod
    def from_dict(cls, config: dict) -> 'InstanceRegistry':
        """Build registry from an already-parsed config mapping."""
        if not isinstance(config, dict):
            raise ConfigurationError("Config root must be a JSON object")

        sites = config.get('sites')
        if not isinstance(sites, list):
            raise ConfigurationError("Config must contain a 'sites' list")

        descriptors = []
        for index, site in enumerate(sites):
            if not isinstance(site, dict):
                raise ConfigurationError(f"sites[{index}] must be an object")
            missing = [key for key in ('name', 'user', 'token') if key not in site]
            if missing:
                raise ConfigurationError(
                    f"sites[{index}] is missing: {', '.join(missing)}"
                )
            descriptors.append(InstanceDescriptor.for_zulip(
                name=str(site['name']),
                user=str(site['user']),
                token=str(site['token']),
                base_address=site.get('url')
            ))

        validated = validate_descriptors(descriptors)
        return cls(
            _instances={d.name: d for d in validated},
            _settings=AggregatorSettings.from_dict(config.get('settings'))
        )

    def get(self, name: str) -> Optional[InstanceDescriptor]:
        """Get instance by name."""
        return self._instances.get(name)

    def all_instances(self) -> Iterator[InstanceDescriptor]:
        """Iterate instances in configured order."""
        yield from self._instances.values()

    def descriptors(self) -> List[InstanceDescriptor]:
        return list(self._instances.values())

    @property
    def settings(self) -> AggregatorSettings:
        return self._settings

    @property
    def count(self) -> int:
        return len(self._instances)
