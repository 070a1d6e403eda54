"""
Centralized configuration loader and accessors for RevoltBot.

Loads YAML from `config/config.yaml` (or $REVOLTBOT_CONFIG) and provides typed
getters aligned with the documented schema (server.*, provider.*, prompts.*,
client.*, capture.*, speech.*, logging.*). Credentials come from the
environment only.
"""
from __future__ import annotations

import os
import re
from typing import Any, Dict, List, Optional, Tuple

import yaml

from .error_handler import ConfigurationError

_DEFAULT_CONFIG_PATH = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "..", "config", "config.yaml"))
_CONFIG_PATH = os.environ.get("REVOLTBOT_CONFIG", _DEFAULT_CONFIG_PATH)
_CFG: Dict[str, Any] = {}
_LOADED = False

_BOOL_TRUE_VALUES = frozenset({"true", "1", "yes", "y", "on"})
_BOOL_FALSE_VALUES = frozenset({"false", "0", "no", "n", "off"})

API_KEY_ENV = "GEMINI_API_KEY"

DEFAULT_SYSTEM_INSTRUCTION = """
You are the official voice assistant for Revolt Motors, an Indian electric vehicle manufacturer.
Your role is to assist customers with information about Revolt Motors products, services, dealerships,
and electric vehicles in general.

Key points to remember:
- Only answer questions related to Revolt Motors and electric vehicles
- For unrelated questions, politely decline to answer and guide back to Revolt topics
- Keep responses concise and conversational
- Provide accurate technical specifications when asked
- Mention dealership locations and contact info when relevant
- Current models: RV400, RV300
- Battery options, range, charging times are important details
- Pricing starts at ₹1.03 lakh (ex-showroom)

Always respond in the same language as the user's question.
""".strip()


def _load() -> None:
    global _CFG, _LOADED
    if _LOADED:
        return
    if os.path.exists(_CONFIG_PATH):
        with open(_CONFIG_PATH, "r", encoding="utf-8") as f:
            _CFG = yaml.safe_load(f) or {}
    else:
        _CFG = {}

    _validate_config(_CFG)
    _LOADED = True


def _validate_config(config: Dict[str, Any]) -> None:
    """Validate configuration values and report every problem at once"""
    errors = []
    warnings = []

    server_cfg = config.get("server") or {}
    if isinstance(server_cfg, dict):
        if "port" in server_cfg:
            port = server_cfg["port"]
            if not isinstance(port, int) or isinstance(port, bool) or port < 0 or port > 65535:
                errors.append("server.port must be between 0 and 65535")
        if "host" in server_cfg:
            host = server_cfg["host"]
            if not isinstance(host, str) or not _is_valid_host(host):
                errors.append("server.host is not a valid host address")
        if "path" in server_cfg:
            path = server_cfg["path"]
            if not isinstance(path, str) or not path.startswith("/"):
                errors.append("server.path must start with '/'")
        if "allowed_origin" in server_cfg:
            origin = server_cfg["allowed_origin"]
            if origin is not None and (not isinstance(origin, str) or not origin.startswith(("http://", "https://"))):
                errors.append("server.allowed_origin must be an http(s) origin")

    provider_cfg = config.get("provider") or {}
    if isinstance(provider_cfg, dict):
        if "timeout" in provider_cfg:
            timeout = provider_cfg["timeout"]
            if not isinstance(timeout, (int, float)) or timeout <= 0:
                errors.append("provider.timeout must be a positive number")
            elif timeout > 300:
                warnings.append("provider.timeout is very long; a hung model call stalls the turn")
        if "max_output_tokens" in provider_cfg:
            tokens = provider_cfg["max_output_tokens"]
            if not isinstance(tokens, int) or tokens <= 0:
                errors.append("provider.max_output_tokens must be a positive integer")

    client_cfg = config.get("client") or {}
    if isinstance(client_cfg, dict):
        if "reconnect_delay" in client_cfg:
            delay = client_cfg["reconnect_delay"]
            if not isinstance(delay, (int, float)) or delay <= 0:
                errors.append("client.reconnect_delay must be a positive number")
        if "server_url" in client_cfg:
            url = client_cfg["server_url"]
            if not isinstance(url, str) or not url.startswith(("ws://", "wss://")):
                errors.append("client.server_url must be a ws:// or wss:// URL")
        for key in ("language", "baseline_language"):
            if key in client_cfg and not _is_language_tag(client_cfg[key]):
                errors.append(f"client.{key} must be a language tag such as 'en-IN'")

    capture_cfg = config.get("capture") or {}
    if isinstance(capture_cfg, dict):
        for key in ("restart_delay", "timeout", "phrase_time_limit"):
            if key in capture_cfg:
                value = capture_cfg[key]
                if not isinstance(value, (int, float)) or value < 0:
                    errors.append(f"capture.{key} must be a non-negative number")

    speech_cfg = config.get("speech") or {}
    if isinstance(speech_cfg, dict):
        if "rate" in speech_cfg:
            rate = speech_cfg["rate"]
            if not isinstance(rate, (int, float)) or rate <= 0:
                errors.append("speech.rate must be a positive number")
        if "volume" in speech_cfg:
            volume = speech_cfg["volume"]
            if not isinstance(volume, (int, float)) or volume < 0 or volume > 1:
                errors.append("speech.volume must be between 0 and 1")

    if errors:
        error_msg = "Configuration validation failed:\n" + "\n".join(f"  - {error}" for error in errors)
        raise ValueError(error_msg)

    for warning in warnings:
        print(f"Config warning: {warning}")


def _is_valid_host(host: str) -> bool:
    """Validate host address format"""
    if not host:
        return False

    if host in ["localhost", "127.0.0.1", "0.0.0.0"]:
        return True

    ip_pattern = r'^(\d{1,3}\.){3}\d{1,3}$'
    if re.match(ip_pattern, host):
        return all(0 <= int(part) <= 255 for part in host.split('.'))

    hostname_pattern = r'^[a-zA-Z0-9]([a-zA-Z0-9\-]{0,61}[a-zA-Z0-9])?(\.[a-zA-Z0-9]([a-zA-Z0-9\-]{0,61}[a-zA-Z0-9])?)*$'
    return bool(re.match(hostname_pattern, host))


def _is_language_tag(value: Any) -> bool:
    return isinstance(value, str) and bool(re.match(r'^[A-Za-z]{2,3}(-[A-Za-z0-9]{2,8})*$', value))


def get(path: str, default: Any = None) -> Any:
    """Dot-path getter from loaded config.

    Example: get("provider.timeout", 30)
    """
    _load()
    cur: Any = _CFG
    for part in path.split("."):
        if isinstance(cur, dict) and part in cur:
            cur = cur[part]
        else:
            return default
    return cur


def get_typed(path: str, default: Any, cast_type: type) -> Any:
    """Get a configuration value with type casting and default fallback."""
    val = get(path, default)

    if cast_type is bool:
        if isinstance(val, bool):
            return val
        if isinstance(val, str):
            normalized = val.strip().lower()
            if normalized in _BOOL_TRUE_VALUES:
                return True
            if normalized in _BOOL_FALSE_VALUES:
                return False
            return default
        try:
            return bool(val)
        except (TypeError, ValueError):
            return default

    if isinstance(val, cast_type):
        return val

    try:
        return cast_type(val)
    except (TypeError, ValueError):
        return default


# ---- Server ----
def get_server_host_port() -> Tuple[str, int]:
    host = str(get("server.host", "0.0.0.0"))
    env_port = os.getenv("PORT")
    if env_port:
        try:
            return host, int(env_port)
        except ValueError:
            raise ConfigurationError(f"PORT must be an integer, got {env_port!r}",
                                     component="config", operation="server_port")
    return host, get_typed("server.port", 3000, int)


def get_server_path() -> str:
    return str(get("server.path", "/ws"))


def get_allowed_origin() -> Optional[str]:
    origin = get("server.allowed_origin", "http://localhost:5173")
    return str(origin) if origin else None


# ---- Provider ----
def get_api_key() -> Optional[str]:
    key = os.getenv(API_KEY_ENV, "").strip()
    return key or None


def require_api_key() -> str:
    """Return the provider API key or raise; the server refuses to start without it."""
    key = get_api_key()
    if not key:
        raise ConfigurationError(f"Missing {API_KEY_ENV} in environment",
                                 component="config", operation="api_key")
    return key


def get_provider_model() -> str:
    return str(get("provider.model", "gemini-1.5-flash-latest"))


def get_provider_base_url() -> str:
    return str(get("provider.base_url", "https://generativelanguage.googleapis.com/v1beta")).rstrip("/")


def get_provider_max_output_tokens() -> int:
    return get_typed("provider.max_output_tokens", 500, int)


def get_provider_timeout() -> float:
    return get_typed("provider.timeout", 30.0, float)


def get_system_instruction() -> str:
    return str(get("prompts.system", DEFAULT_SYSTEM_INSTRUCTION)).strip()


# ---- Client ----
def get_client_server_url() -> str:
    return str(get("client.server_url", "ws://localhost:3000/ws"))


def get_client_origin() -> Optional[str]:
    origin = get("client.origin", get_allowed_origin())
    return str(origin) if origin else None


def get_reconnect_delay() -> float:
    return get_typed("client.reconnect_delay", 3.0, float)


def get_client_language() -> str:
    return str(get("client.language", "en-IN"))


def get_baseline_language() -> str:
    return str(get("client.baseline_language", "en-IN"))


def get_capture_restart_delay() -> float:
    return get_typed("capture.restart_delay", 0.25, float)


def get_capture_timeout() -> float:
    return get_typed("capture.timeout", 5.0, float)


def get_capture_phrase_time_limit() -> float:
    return get_typed("capture.phrase_time_limit", 10.0, float)


def get_speech_rate() -> int:
    return get_typed("speech.rate", 180, int)


def get_speech_volume() -> float:
    return get_typed("speech.volume", 1.0, float)


def structured_logging() -> bool:
    return get_typed("logging.structured", False, bool)


def validate_config_silent() -> Tuple[bool, List[str]]:
    """Validate configuration without raising exceptions

    Returns:
        tuple: (is_valid, list_of_problems)
    """
    try:
        if not _LOADED:
            _load()
        _validate_config(_CFG)
        return True, []
    except ValueError as e:
        return False, [str(e)]
    except (OSError, yaml.YAMLError) as e:
        return False, [f"Validation error: {e}"]


def use_config_file(path: str) -> None:
    """Point the loader at another YAML file and reload it"""
    global _CONFIG_PATH
    _CONFIG_PATH = os.path.abspath(path)
    reload_config()


def reload_config() -> None:
    """Reload configuration from file"""
    global _CFG, _LOADED
    _LOADED = False
    _CFG = {}
    _load()
