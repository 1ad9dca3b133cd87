"""shell_agent.config

Central configuration.

Keep it simple: defaults, overridden by environment variables, overridden by
an optional JSON file. A local `.env` file is loaded for developer
convenience (only keys not already present in `os.environ`).

Config file location:
- `$SHELL_AGENT_CONFIG` if set
- otherwise `~/.config/shell_agent/config.json`
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Optional

from .prompts import DEFAULT_SYSTEM_PROMPT


JsonDict = dict[str, Any]

_LOG = logging.getLogger("shell_agent.config")


def _load_dotenv_best_effort() -> None:
    """Best-effort `.env` loader.

    Supported format: `KEY=VALUE` per line, with optional quotes.
    Lines starting with `#` are ignored.
    """

    try:
        env_path = Path.cwd() / ".env"
        if not env_path.exists() or not env_path.is_file():
            return

        for raw in env_path.read_text(encoding="utf-8").splitlines():
            line = raw.strip()
            if not line or line.startswith("#"):
                continue
            if "=" not in line:
                continue
            k, v = line.split("=", 1)
            key = k.strip()
            val = v.strip().strip('"').strip("'")
            if not key:
                continue
            os.environ.setdefault(key, val)
    except OSError:
        # Never fail app startup due to dotenv parsing.
        return


# Load `.env` once at import time.
_load_dotenv_best_effort()

SUPPORTED_PROVIDERS: tuple[str, ...] = ("openai", "anthropic", "ollama", "fake")

DEFAULT_PROVIDER: str = "openai"

# Per-provider defaults: (model, api key env var).
PROVIDER_DEFAULTS: dict[str, tuple[str, str]] = {
    "openai": ("gpt-5-mini", "OPENAI_API_KEY"),
    "anthropic": ("claude-sonnet-4-5", "ANTHROPIC_API_KEY"),
    "ollama": ("llama3", ""),
    "fake": ("fake", ""),
}


def _truthy(v: Optional[str]) -> bool:
    return (v or "").strip() in {"1", "true", "True", "yes", "on"}


def default_config_path() -> Path:
    p = os.environ.get("SHELL_AGENT_CONFIG")
    if p:
        return Path(p).expanduser()
    return Path.home() / ".config" / "shell_agent" / "config.json"


@dataclass(frozen=True)
class AppConfig:
    provider: str = DEFAULT_PROVIDER
    model: str = PROVIDER_DEFAULTS[DEFAULT_PROVIDER][0]
    # API key stored directly in config (takes precedence over `api_key_env`).
    api_key: str | None = None
    api_key_env: str = PROVIDER_DEFAULTS[DEFAULT_PROVIDER][1]
    ollama_host: str = "http://localhost:11434"
    ollama_model: str = "llama3"
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    buffer_capacity: int = 2000
    context_lines: int = 50
    poll_interval_ms: int = 50
    pty_rows: int = 40
    pty_cols: int = 120
    resume_after_commands: bool = True
    output_idle_ms: int = 450
    output_max_wait_s: float = 25.0
    request_timeout_s: float = 60.0
    fake_mode: bool = False
    log_dir: Path = field(default_factory=lambda: Path.home() / ".cache" / "shell_agent")

    def resolve_api_key(self) -> str | None:
        """Config value first, then the env var named by `api_key_env`."""

        if self.api_key:
            _LOG.info("using api_key from config")
            return self.api_key
        if self.api_key_env:
            k = os.environ.get(self.api_key_env)
            if k:
                _LOG.info("using api_key from env var $%s", self.api_key_env)
                return k
        return None


def _from_env(cfg: AppConfig) -> AppConfig:
    updates: JsonDict = {}

    provider = (os.environ.get("SHELL_AGENT_PROVIDER") or "").strip().lower()
    if provider:
        if provider in SUPPORTED_PROVIDERS:
            model, key_env = PROVIDER_DEFAULTS[provider]
            updates.update(provider=provider, model=model, api_key_env=key_env)
        else:
            _LOG.warning("unknown provider %r in SHELL_AGENT_PROVIDER; keeping %s", provider, cfg.provider)

    if os.environ.get("SHELL_AGENT_MODEL"):
        updates["model"] = os.environ["SHELL_AGENT_MODEL"].strip()
    if os.environ.get("SHELL_AGENT_API_KEY"):
        updates["api_key"] = os.environ["SHELL_AGENT_API_KEY"].strip()
    if os.environ.get("SHELL_AGENT_API_KEY_ENV"):
        updates["api_key_env"] = os.environ["SHELL_AGENT_API_KEY_ENV"].strip()
    if os.environ.get("OLLAMA_HOST"):
        updates["ollama_host"] = os.environ["OLLAMA_HOST"].strip()
    if os.environ.get("OLLAMA_MODEL"):
        updates["ollama_model"] = os.environ["OLLAMA_MODEL"].strip()
    if os.environ.get("SHELL_AGENT_LOG_DIR"):
        updates["log_dir"] = Path(os.environ["SHELL_AGENT_LOG_DIR"]).expanduser()
    if _truthy(os.environ.get("SHELL_AGENT_FAKE_LLM")):
        updates["fake_mode"] = True

    return replace(cfg, **updates) if updates else cfg


def _coerce(name: str, value: Any, default: Any) -> Any:
    """Coerce a JSON value to the type of `default`; raise ValueError if impossible."""

    if isinstance(default, bool):
        if isinstance(value, bool):
            return value
        raise ValueError(f"{name} must be a boolean")
    if isinstance(default, int):
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError(f"{name} must be an integer")
        return int(value)
    if isinstance(default, float):
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError(f"{name} must be a number")
        return float(value)
    if isinstance(default, Path):
        return Path(str(value)).expanduser()
    if default is None or isinstance(default, str):
        if value is None:
            return None
        return str(value)
    return value


def apply_overrides(cfg: AppConfig, overrides: JsonDict) -> AppConfig:
    """Best-effort: apply known keys from `overrides`; unknown or invalid keys are logged and skipped."""

    if not isinstance(overrides, dict):
        return cfg
    known = {f.name: f for f in fields(AppConfig)}
    updates: JsonDict = {}

    provider = overrides.get("provider")
    if isinstance(provider, str) and provider.strip().lower() in SUPPORTED_PROVIDERS:
        p = provider.strip().lower()
        model, key_env = PROVIDER_DEFAULTS[p]
        updates.update(provider=p, model=model, api_key_env=key_env)

    for k, v in overrides.items():
        if k == "provider":
            continue
        if k not in known:
            _LOG.warning("ignoring unknown config key %r", k)
            continue
        try:
            updates[k] = _coerce(k, v, getattr(cfg, k))
        except ValueError as e:
            _LOG.warning("ignoring invalid config value: %s", e)

    cfg = replace(cfg, **updates)
    return _validated(cfg)


def _validated(cfg: AppConfig) -> AppConfig:
    defaults = AppConfig()
    fixes: JsonDict = {}
    for name in ("buffer_capacity", "context_lines", "poll_interval_ms", "pty_rows", "pty_cols", "output_idle_ms"):
        if int(getattr(cfg, name)) < 1:
            _LOG.warning("%s must be >= 1; using default %s", name, getattr(defaults, name))
            fixes[name] = getattr(defaults, name)
    for name in ("output_max_wait_s", "request_timeout_s"):
        if float(getattr(cfg, name)) <= 0:
            fixes[name] = getattr(defaults, name)
    return replace(cfg, **fixes) if fixes else cfg


def load_config_file(path: Path) -> JsonDict:
    try:
        if not path.exists():
            return {}
        d = json.loads(path.read_text(encoding="utf-8"))
        return d if isinstance(d, dict) else {}
    except (OSError, json.JSONDecodeError) as e:
        _LOG.warning("could not read config file %s: %s", path, e)
        return {}


def save_config_file(path: Path, data: JsonDict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(".tmp")
    tmp.write_text(json.dumps(data, ensure_ascii=False, indent=2) + "\n", encoding="utf-8")
    tmp.replace(path)


def load_config(path: Optional[Path] = None) -> AppConfig:
    cfg = _validated(_from_env(AppConfig()))
    p = path if path is not None else default_config_path()
    overrides = load_config_file(p)
    if overrides:
        cfg = apply_overrides(cfg, overrides)
    return cfg
