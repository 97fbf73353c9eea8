import os
import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple
from core.logging_utils import log_json
from core.exceptions import ConfigurationError

# ---------------------------------------------------------------------------
# Value validators: each returns (is_valid: bool, coerced_value, reason: str)
# ---------------------------------------------------------------------------

def _validate_positive_int(key: str, val: Any) -> Tuple[bool, Any, str]:
    try:
        v = int(val)
        if v > 0:
            return True, v, ""
        return False, None, f"{key} must be a positive integer, got {val!r}"
    except (ValueError, TypeError):
        return False, None, f"{key} must be an integer, got {val!r}"


def _validate_bool(key: str, val: Any) -> Tuple[bool, Any, str]:
    if isinstance(val, bool):
        return True, val, ""
    if isinstance(val, str) and val.lower() in ("true", "false", "1", "0", "yes", "no"):
        return True, val.lower() in ("true", "1", "yes"), ""
    return False, None, f"{key} must be a boolean, got {val!r}"


def _validate_string(key: str, val: Any) -> Tuple[bool, Any, str]:
    if val is None or isinstance(val, str):
        return True, val, ""
    return False, None, f"{key} must be a string, got {val!r}"


def _validate_float_range(key: str, val: Any, lo: float, hi: float) -> Tuple[bool, Any, str]:
    try:
        v = float(val)
        if lo <= v <= hi:
            return True, v, ""
        return False, None, f"{key} must be in [{lo}, {hi}], got {val!r}"
    except (ValueError, TypeError):
        return False, None, f"{key} must be a number, got {val!r}"


def _validate_choice(key: str, val: Any, choices: Tuple[str, ...]) -> Tuple[bool, Any, str]:
    if isinstance(val, str) and val.lower() in choices:
        return True, val.lower(), ""
    return False, None, f"{key} must be one of {choices}, got {val!r}"


def _validate_string_list(key: str, val: Any) -> Tuple[bool, Any, str]:
    if isinstance(val, str):
        return True, [item.strip() for item in val.split(",") if item.strip()], ""
    if isinstance(val, (list, tuple)) and all(isinstance(item, str) for item in val):
        return True, list(val), ""
    return False, None, f"{key} must be a list of strings, got {val!r}"


# Key → validator function (None = no validation, just pass through)
_KEY_VALIDATORS = {
    "model_name":       lambda k, v: _validate_string(k, v),
    "api_key":          lambda k, v: _validate_string(k, v),
    "openai_api_key":   lambda k, v: _validate_string(k, v),
    "api_base_url":     lambda k, v: _validate_string(k, v),
    "llm_timeout":      lambda k, v: _validate_positive_int(k, v),
    "llm_max_retries":  lambda k, v: _validate_positive_int(k, v),
    "reflection_enabled": lambda k, v: _validate_bool(k, v),
    "max_reflection_iterations": lambda k, v: _validate_positive_int(k, v),
    "quality_threshold": lambda k, v: _validate_float_range(k, v, 0.0, 100.0),
    "plan_max_iterations": lambda k, v: _validate_positive_int(k, v),
    "plan_color_threshold": lambda k, v: _validate_float_range(k, v, 0.0, 100.0),
    "consultations_enabled": lambda k, v: _validate_bool(k, v),
    "consultation_timeout": lambda k, v: _validate_float_range(k, v, 0.001, 600.0),
    "smart_routing_enabled": lambda k, v: _validate_bool(k, v),
    "run_tests":        lambda k, v: _validate_bool(k, v),
    "test_mode":        lambda k, v: _validate_choice(k, v, ("auto", "sandbox", "command")),
    "test_commands":    lambda k, v: _validate_string_list(k, v),
    "allowed_commands": lambda k, v: _validate_string_list(k, v),
    "max_debug_cycles": lambda k, v: _validate_positive_int(k, v),
    "auto_fix_enabled": lambda k, v: _validate_bool(k, v),
    "sandbox_runtime_checks": lambda k, v: _validate_bool(k, v),
    "sandbox_timeout":  lambda k, v: _validate_float_range(k, v, 0.001, 600.0),
    "command_timeout":  lambda k, v: _validate_float_range(k, v, 0.001, 3600.0),
    "context_store_path": lambda k, v: _validate_string(k, v),
    "default_entry_file": lambda k, v: _validate_string(k, v),
}

DEFAULT_CONFIG = {
    "model_name": "gpt-4o-mini",
    "api_key": None,
    "openai_api_key": None,
    "api_base_url": None,
    "llm_timeout": 60,
    "llm_max_retries": 3,
    "reflection_enabled": True,
    "max_reflection_iterations": 2,
    "quality_threshold": 75.0,
    "plan_max_iterations": 2,
    "plan_color_threshold": 70.0,
    "consultations_enabled": True,
    "consultation_timeout": 30.0,
    "smart_routing_enabled": True,
    "run_tests": True,
    "test_mode": "auto",
    "test_commands": [],
    "allowed_commands": [],
    "max_debug_cycles": 3,
    "auto_fix_enabled": True,
    "sandbox_runtime_checks": True,
    "sandbox_timeout": 5.0,
    "command_timeout": 30.0,
    "context_store_path": "memory/store",
    "default_entry_file": "App.jsx",
    "model_routing": {
        "intent": "gpt-4o-mini",
        "planning": "gpt-4o",
        "plan_review": "gpt-4o-mini",
        "code_generation": "gpt-4o",
        "review": "gpt-4o-mini",
        "modification": "gpt-4o",
        "analysis": "gpt-4o-mini",
        "debugging": "gpt-4o",
    },
}

_NESTED_KEYS = ("model_routing",)


class ConfigManager:
    """
    Centralized configuration manager for patchwright.
    Enforces a tiered strategy: (Overrides > ENV > JSON > Defaults).
    """
    def __init__(self, config_file="patchwright.config.json", overrides: Optional[Dict[str, Any]] = None):
        self.config_file = Path(config_file)
        self.runtime_overrides = overrides or {}
        self.file_config = {}
        self.effective_config = {}

        self.refresh()

    def _load_from_file(self) -> Dict[str, Any]:
        if not self.config_file.exists():
            return {}
        try:
            with open(self.config_file, 'r') as f:
                data = json.load(f)
                log_json("INFO", "config_loaded_from_file", details={"path": str(self.config_file)})
                return data
        except json.JSONDecodeError as e:
            log_json("ERROR", "config_parse_failed", details={"error": str(e)})
            raise ConfigurationError(f"Failed to parse config file: {e}")

    def _load_from_env(self) -> Dict[str, Any]:
        env_config = {}

        env_mappings = {
            "OPENROUTER_API_KEY": "api_key",
            "OPENAI_API_KEY": "openai_api_key",
        }
        for env_key, config_key in env_mappings.items():
            if env_key in os.environ:
                env_config[config_key] = os.environ[env_key]

        # PATCHWRIGHT_* overrides for all flat keys; validators coerce on read
        for key in DEFAULT_CONFIG:
            if key in _NESTED_KEYS:
                continue
            env_key = f"PATCHWRIGHT_{key.upper()}"
            if env_key in os.environ:
                env_config[key] = os.environ[env_key]

        routing_overrides = {}
        for sub_key in DEFAULT_CONFIG["model_routing"]:
            env_name = f"PATCHWRIGHT_MODEL_ROUTING_{sub_key.upper()}"
            if env_name in os.environ:
                routing_overrides[sub_key] = os.environ[env_name]
        if routing_overrides:
            env_config["model_routing"] = routing_overrides

        return env_config

    def refresh(self):
        """Re-evaluates the effective configuration based on the tier hierarchy."""
        self.file_config = self._load_from_file()
        env_config = self._load_from_env()

        # Merge hierarchy: Defaults < JSON < ENV < Overrides
        merged = {k: (dict(v) if isinstance(v, dict) else v) for k, v in DEFAULT_CONFIG.items()}
        for tier in (self.file_config, env_config, self.runtime_overrides):
            for k, v in tier.items():
                if k in _NESTED_KEYS and isinstance(v, dict):
                    merged[k].update(v)
                else:
                    merged[k] = v

        self.effective_config = merged

    def _validate_value(self, key: str, value: Any) -> Any:
        """Validate *value* for *key*; return coerced value or DEFAULT_CONFIG fallback on error."""
        validator = _KEY_VALIDATORS.get(key)
        if validator is None:
            return value
        ok, coerced, reason = validator(key, value)
        if ok:
            return coerced
        default = DEFAULT_CONFIG.get(key)
        log_json("ERROR", "config_value_invalid",
                 details={"key": key, "value": value, "reason": reason,
                          "fallback": default})
        return default

    def get(self, key: str, default: Any = None) -> Any:
        """Retrieves a configuration value from the effective config."""
        val = self.effective_config.get(key, default)
        return self._validate_value(key, val) if key in _KEY_VALIDATORS else val

    def model_for(self, role: str) -> str:
        """Return the model configured for a collaborator *role*."""
        routing = self.effective_config.get("model_routing") or {}
        return routing.get(role) or self.get("model_name")

    def show_config(self) -> Dict[str, Any]:
        """Return the effective config dict (for diagnostics)."""
        return dict(self.effective_config)

    def set_runtime_override(self, key: str, value: Any):
        """Sets a temporary runtime override."""
        self.runtime_overrides[key] = value
        self.refresh()

    def with_overrides(self, overrides: Dict[str, Any]) -> "ConfigManager":
        """Return a copy of this manager with extra runtime overrides on top."""
        merged = {**self.runtime_overrides, **(overrides or {})}
        return ConfigManager(config_file=self.config_file, overrides=merged)

    def persist_to_file(self, key: str, value: Any):
        """Sets a configuration value and persists it to the config file.

        Unknown keys and values their validator rejects raise ConfigurationError
        and leave the file untouched.
        """
        if key not in DEFAULT_CONFIG:
            raise ConfigurationError(f"Unknown config key {key!r}")
        if key in _NESTED_KEYS:
            if not isinstance(value, dict):
                raise ConfigurationError(f"{key} must be a JSON object, got {value!r}")
        elif key in _KEY_VALIDATORS:
            ok, value, reason = _KEY_VALIDATORS[key](key, value)
            if not ok:
                raise ConfigurationError(reason)
        self.file_config[key] = value
        try:
            with open(self.config_file, 'w') as f:
                json.dump(self.file_config, f, indent=4)
            log_json("INFO", "config_persisted", details={"key": key})
            self.refresh()
        except OSError as e:
            log_json("ERROR", "config_save_failed", details={"error": str(e)})
            raise ConfigurationError(f"Failed to save config: {e}")

    def bootstrap(self):
        """Generates a default patchwright.config.json if it doesn't exist."""
        if self.config_file.exists():
            log_json("INFO", "config_bootstrap_skipped_exists")
            return

        bootstrap_data = {
            "model_name": DEFAULT_CONFIG["model_name"],
            "openai_api_key": "YOUR_OPENAI_API_KEY_HERE",
            "max_debug_cycles": DEFAULT_CONFIG["max_debug_cycles"],
        }

        with open(self.config_file, 'w') as f:
            json.dump(bootstrap_data, f, indent=4)
        log_json("INFO", "config_bootstrapped", details={"path": str(self.config_file)})

# Global instance initialized with defaults
config = ConfigManager()
