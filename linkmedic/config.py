"""
Configuration handler for LinkMedic
"""

import os
from typing import Dict, List, Optional

import yaml

from .errors import ConfigError
from .signatures import PageSignatures


DEFAULT_SETTINGS = {
    'concurrent_requests': 5,
    'request_timeout': 10,
    'cache_ttl_hours': 24,
    'cache_path': None,
    'affiliate_tag': None,
    'scrapingbee_api_key': None,
    'youtube_api_key': None,
    'delay_between_requests': 0.0,
    'suggestion_rate_per_second': 1.0,
    'min_confidence': 60,
    'max_search_results': 5,
    'max_consecutive_failures': 5,
}

ENV_OVERRIDES = {
    'SCRAPINGBEE_API_KEY': 'scrapingbee_api_key',
    'YOUTUBE_API_KEY': 'youtube_api_key',
    'LINKMEDIC_AFFILIATE_TAG': 'affiliate_tag',
}

POSITIVE_NUMBERS = (
    'concurrent_requests', 'request_timeout', 'cache_ttl_hours',
    'suggestion_rate_per_second', 'max_search_results', 'max_consecutive_failures',
)


class Config:
    """Configuration handler for LinkMedic"""

    def __init__(self, config_path: Optional[str] = 'config.yaml', required: bool = True,
                 environ: Optional[Dict[str, str]] = None):
        self.config_path = config_path
        self.required = required
        self.environ = os.environ if environ is None else environ
        self.data = self._load_config()
        self.signatures = PageSignatures.from_config(self.data.get('signatures'))

    @classmethod
    def from_dict(cls, data: Dict, environ: Optional[Dict[str, str]] = None) -> 'Config':
        """Build a config from an already-parsed mapping (tests, embedding)"""
        config = cls.__new__(cls)
        config.config_path = None
        config.required = False
        config.environ = {} if environ is None else environ
        config.data = config._apply_defaults(dict(data or {}))
        config.signatures = PageSignatures.from_config(config.data.get('signatures'))
        return config

    def _load_config(self) -> dict:
        """Load and validate configuration from YAML file"""
        raw = {}
        if self.config_path:
            try:
                with open(self.config_path, 'r', encoding='utf-8') as f:
                    raw = yaml.safe_load(f) or {}
            except FileNotFoundError:
                if self.required:
                    raise ConfigError(f"Configuration file '{self.config_path}' not found")
            except yaml.YAMLError as e:
                raise ConfigError(f"Invalid YAML in '{self.config_path}': {e}")
        if not isinstance(raw, dict):
            raise ConfigError('Config must be a mapping at the top level')
        return self._apply_defaults(raw)

    def _apply_defaults(self, config: dict) -> dict:
        settings = config.get('settings') or {}
        if not isinstance(settings, dict):
            raise ConfigError("'settings' must be a mapping")

        merged = dict(DEFAULT_SETTINGS)
        for key, value in settings.items():
            if key not in DEFAULT_SETTINGS:
                raise ConfigError(f"Unknown setting '{key}'")
            merged[key] = value

        for env_name, key in ENV_OVERRIDES.items():
            value = self.environ.get(env_name)
            if value:
                merged[key] = value

        for key in POSITIVE_NUMBERS:
            value = merged[key]
            if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
                raise ConfigError(f"Setting '{key}' must be a positive number, got {value!r}")
        if merged['delay_between_requests'] < 0:
            raise ConfigError("Setting 'delay_between_requests' cannot be negative")
        if not 0 <= merged['min_confidence'] <= 100:
            raise ConfigError("Setting 'min_confidence' must be between 0 and 100")

        config['settings'] = merged
        sources = config.get('sources') or {}
        if not isinstance(sources, dict):
            raise ConfigError("'sources' must be a mapping")
        config['sources'] = {
            'youtube_videos': sources.get('youtube_videos') or [],
            'links': sources.get('links') or [],
        }
        return config

    @property
    def settings(self) -> dict:
        return self.data['settings']

    @property
    def youtube_videos(self) -> List[Dict]:
        return self.data['sources']['youtube_videos']

    @property
    def links(self) -> List[str]:
        return self.data['sources']['links']
