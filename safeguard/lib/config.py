"""
Runtime configuration.

Infrastructure settings come from environment variables; decision thresholds
come from SecurityConfig, whose defaults live here and can be overridden by
rows in the `security_config` collection.
"""
import logging
import os
import threading
from dataclasses import dataclass
from typing import Dict, Optional

from safeguard.lib.errors import ConfigError
from safeguard.models.enums import ConfigCategory
from safeguard.models.security import ConfigValue, SecurityConfigEntry

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

_TYPES = {"bool": bool, "int": int, "float": float, "str": str}


def configure_logging(level: Optional[str] = None) -> None:
    """Apply the standard log format; level defaults to SAFEGUARD_LOG_LEVEL."""
    level = level or os.getenv("SAFEGUARD_LOG_LEVEL", "INFO")
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)


@dataclass(frozen=True)
class Setting:
    default: ConfigValue
    value_type: str
    category: ConfigCategory
    description: str


DEFAULT_SETTINGS: Dict[str, Setting] = {
    # Content filtering
    "block_threshold": Setting(0.7, "float", ConfigCategory.CONTENT_FILTERING, "Score above which content is blocked"),
    "flag_threshold": Setting(0.4, "float", ConfigCategory.CONTENT_FILTERING, "Score above which content is flagged"),
    "manual_review_threshold": Setting(0.7, "float", ConfigCategory.CONTENT_FILTERING, "Score above which manual review is required"),
    "url_limit": Setting(3, "int", ConfigCategory.CONTENT_FILTERING, "URLs allowed before the URL penalty applies"),
    "url_penalty": Setting(0.3, "float", ConfigCategory.CONTENT_FILTERING, "Score added for excessive URLs"),
    "caps_ratio_threshold": Setting(0.7, "float", ConfigCategory.CONTENT_FILTERING, "Uppercase ratio treated as shouting"),
    "caps_min_length": Setting(10, "int", ConfigCategory.CONTENT_FILTERING, "Minimum text length for the caps check"),
    "caps_penalty": Setting(0.2, "float", ConfigCategory.CONTENT_FILTERING, "Score added for excessive capitals"),
    "repetition_threshold": Setting(0.5, "float", ConfigCategory.CONTENT_FILTERING, "Word repetition ratio tagged as spam"),
    "priority_urgent_score": Setting(0.8, "float", ConfigCategory.CONTENT_FILTERING, "Score above which queue priority is urgent"),
    "priority_high_score": Setting(0.6, "float", ConfigCategory.CONTENT_FILTERING, "Score above which queue priority is high"),
    "priority_medium_score": Setting(0.4, "float", ConfigCategory.CONTENT_FILTERING, "Score above which queue priority is medium"),
    "max_images": Setting(10, "int", ConfigCategory.CONTENT_FILTERING, "Images allowed per item before flagging"),
    "max_posts_per_minute": Setting(5.0, "float", ConfigCategory.CONTENT_FILTERING, "Posting rate above which a user is flagged"),
    "repetitive_content_threshold": Setting(0.8, "float", ConfigCategory.CONTENT_FILTERING, "Behavioural repetition above which a user is flagged"),
    "behavior_spam_threshold": Setting(0.7, "float", ConfigCategory.CONTENT_FILTERING, "Behavioural spam score above which content is blocked"),
    # Authentication
    "failed_login_limit": Setting(5, "int", ConfigCategory.AUTHENTICATION, "Failed logins tolerated per IP in the window"),
    "failed_login_window_minutes": Setting(15, "int", ConfigCategory.AUTHENTICATION, "Brute force look-back window"),
    # Rate limiting
    "rate_limit_default_limit": Setting(100, "int", ConfigCategory.RATE_LIMITING, "Requests allowed per window"),
    "rate_limit_default_window_seconds": Setting(60, "int", ConfigCategory.RATE_LIMITING, "Rate limit window length"),
    "ip_block_default_hours": Setting(24, "int", ConfigCategory.RATE_LIMITING, "Advisory duration for automatic IP blocks"),
    # Monitoring
    "security_level_good": Setting(80, "int", ConfigCategory.MONITORING, "Security score treated as good"),
    "security_level_fair": Setting(60, "int", ConfigCategory.MONITORING, "Security score treated as fair"),
    # Notifications
    "notifications_enabled": Setting(True, "bool", ConfigCategory.NOTIFICATIONS, "Send user and moderator notifications"),
}


def _coerce(key: str, value: ConfigValue, value_type: str) -> ConfigValue:
    expected = _TYPES.get(value_type)
    if expected is None:
        raise ConfigError(f"Unsupported type {value_type!r} for {key}")
    if expected is bool:
        if isinstance(value, bool):
            return value
        raise ConfigError(f"{key} expects bool, got {value!r}")
    if expected is float and isinstance(value, int) and not isinstance(value, bool):
        return float(value)
    if isinstance(value, bool) or not isinstance(value, expected):
        raise ConfigError(f"{key} expects {value_type}, got {value!r}")
    return value


class SecurityConfig:
    """
    Typed key/value settings read at decision time.

    Lookups never touch storage: `load()` pulls overrides once and `set()`
    writes through to the repository when one is attached.
    """

    def __init__(self, repository=None, overrides: Optional[Dict[str, ConfigValue]] = None):
        self.repository = repository
        self._lock = threading.Lock()
        self._values: Dict[str, ConfigValue] = {k: s.default for k, s in DEFAULT_SETTINGS.items()}
        for key, value in (overrides or {}).items():
            self._values[key] = _coerce(key, value, self._setting(key).value_type)

    @staticmethod
    def _setting(key: str) -> Setting:
        setting = DEFAULT_SETTINGS.get(key)
        if setting is None:
            raise ConfigError(f"Unknown config key {key!r}")
        return setting

    def load(self) -> int:
        """Apply stored overrides. Returns how many were applied."""
        if self.repository is None:
            return 0
        applied = 0
        for entry in self.repository.find(SecurityConfigEntry):
            if entry.key not in DEFAULT_SETTINGS:
                logger.warning(f"Ignoring unknown stored config key {entry.key}")
                continue
            value = _coerce(entry.key, entry.value, self._setting(entry.key).value_type)
            with self._lock:
                self._values[entry.key] = value
            applied += 1
        logger.info(f"Loaded {applied} security config overrides")
        return applied

    def get(self, key: str) -> ConfigValue:
        self._setting(key)
        with self._lock:
            return self._values[key]

    def get_float(self, key: str) -> float:
        return float(self.get(key))

    def get_int(self, key: str) -> int:
        return int(self.get(key))

    def set(self, key: str, value: ConfigValue) -> None:
        setting = self._setting(key)
        value = _coerce(key, value, setting.value_type)
        if self.repository is not None:
            self.repository.upsert(SecurityConfigEntry(
                key=key,
                value=value,
                value_type=setting.value_type,
                category=setting.category,
                description=setting.description,
            ))
        with self._lock:
            self._values[key] = value
        logger.info(f"Security config {key} set to {value!r}")

    def by_category(self, category: ConfigCategory) -> Dict[str, ConfigValue]:
        with self._lock:
            return {
                key: self._values[key]
                for key, setting in DEFAULT_SETTINGS.items()
                if setting.category == category
            }

    def as_dict(self) -> Dict[str, ConfigValue]:
        with self._lock:
            return dict(self._values)
