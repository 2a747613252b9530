"""ShopState Feature Flags Module"""

import logging
import os
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Dict, Optional, Union

logger = logging.getLogger(__name__)


class FeatureFlagStatus(str, Enum):
    """Rollout status for string-valued flags"""
    ENABLED = "enabled"
    DISABLED = "disabled"
    DEV_ONLY = "dev_only"


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(f"FEATURE_FLAG_{name}")
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on", "enabled")


def _env_status(name: str, default: FeatureFlagStatus) -> FeatureFlagStatus:
    value = os.environ.get(f"FEATURE_FLAG_{name}")
    if value is None:
        return default
    try:
        return FeatureFlagStatus(value.strip().lower())
    except ValueError:
        logger.warning(f"Invalid value for feature flag {name}: {value!r}, using {default.value}")
        return default


@dataclass
class FeatureFlagsConfig:
    """Configuration for feature flags"""
    DEBUG_MODE_ENABLED: bool = field(default_factory=lambda: _env_bool("DEBUG_MODE_ENABLED", False))
    STAGING_MODE_ENABLED: bool = field(default_factory=lambda: _env_bool("STAGING_MODE_ENABLED", False))
    SECURE_TOKEN_STORAGE: FeatureFlagStatus = field(
        default_factory=lambda: _env_status("SECURE_TOKEN_STORAGE", FeatureFlagStatus.DISABLED)
    )
    STRUCTURED_LOGGING: FeatureFlagStatus = field(
        default_factory=lambda: _env_status("STRUCTURED_LOGGING", FeatureFlagStatus.DISABLED)
    )


class FeatureFlagManager:
    """Manager for feature flags"""

    def __init__(self, config: Optional[FeatureFlagsConfig] = None):
        self.config = config or FeatureFlagsConfig()
        self._flags: Dict[str, bool] = {}

    def _known(self, flag_name: str) -> bool:
        return flag_name in {f.name for f in fields(self.config)}

    def is_enabled(self, flag_name: str) -> bool:
        """Check if a feature flag is enabled.

        First checks runtime overrides in self._flags, then falls back to
        config defaults. Dev-only flags are on only in debug or staging mode.
        """
        # Check runtime overrides first
        if flag_name in self._flags:
            return self._flags[flag_name]

        if not self._known(flag_name):
            return False

        value: Union[bool, FeatureFlagStatus, str] = getattr(self.config, flag_name)
        if isinstance(value, bool):
            return value
        if value == FeatureFlagStatus.DEV_ONLY:
            return self.config.DEBUG_MODE_ENABLED or self.config.STAGING_MODE_ENABLED
        return str(getattr(value, "value", value)).lower() == FeatureFlagStatus.ENABLED.value

    def enable_flag(self, flag_name: str) -> bool:
        """Enable a feature flag. Returns False for unknown flags."""
        if not self._known(flag_name):
            logger.warning(f"Attempted to enable unknown feature flag: {flag_name}")
            return False
        self._flags[flag_name] = True
        logger.info(f"Feature flag enabled: {flag_name}")
        return True

    def disable_flag(self, flag_name: str) -> bool:
        """Disable a feature flag. Returns False for unknown flags."""
        if not self._known(flag_name):
            logger.warning(f"Attempted to disable unknown feature flag: {flag_name}")
            return False
        self._flags[flag_name] = False
        logger.info(f"Feature flag disabled: {flag_name}")
        return True

    def reset(self) -> None:
        """Drop every runtime override"""
        self._flags.clear()

    def get_all_flags(self) -> Dict[str, bool]:
        return {f.name.lower(): self.is_enabled(f.name) for f in fields(self.config)}

    def health_check(self) -> Dict[str, Union[str, int, bool]]:
        all_flags = self.get_all_flags()
        return {
            "status": "healthy",
            "total_flags": len(all_flags),
            "enabled_flags": sum(1 for enabled in all_flags.values() if enabled),
            "debug_mode": self.is_enabled("DEBUG_MODE_ENABLED"),
            "staging_mode": self.is_enabled("STAGING_MODE_ENABLED"),
        }


# Global manager instance
feature_flags = FeatureFlagManager()


def is_feature_enabled(feature_name: str) -> bool:
    """Check if a feature flag is enabled"""
    return feature_flags.is_enabled(feature_name)


def enable_feature(feature_name: str) -> bool:
    return feature_flags.enable_flag(feature_name)


def disable_feature(feature_name: str) -> bool:
    return feature_flags.disable_flag(feature_name)
