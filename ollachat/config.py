"""Configuration file loading and merging for ollachat.

Reads TOML config from ~/.config/ollachat/config.toml (global) and
<base_dir>/ollachat.toml (project). Precedence: CLI > project > global > defaults.
"""

import argparse
import os
import sys
import tomllib
from pathlib import Path
from typing import Any


from .errors import ConfigError  # noqa: F401 (re-export)

_UNSET = object()  # Sentinel for "not set by CLI"

DEFAULT_MODEL = "gpt-oss:20b"
DEFAULT_EMBED_MODEL = "nomic-embed-text"
DEFAULT_EMBED_TEXT = "Why is the sky blue?"
DEFAULT_SYSTEM_FILE = "system.txt"
FALLBACK_SYSTEM_PROMPT = "You are a helpful assistant."

THINK_CHOICES = ("off", "low", "medium", "high")


# --- Schema ---

CONFIG_KEYS: dict[str, type | tuple[type, ...]] = {
    "host": str,
    "model": str,
    "embed_model": str,
    "embed_text": str,
    "no_embed": bool,
    "mode": str,
    "think": str,
    "system_file": str,
    "chat_timeout": (int, float),
    "connect_timeout": (int, float),
    "on_failure": str,
    "color": bool,
    "quiet": bool,
}

_CHOICES: dict[str, tuple[str, ...]] = {
    "mode": ("chat", "generate"),
    "think": THINK_CHOICES,
    "on_failure": ("keep", "rollback"),
}

_POSITIVE_KEYS = {"chat_timeout", "connect_timeout"}

# Argparse dest -> hardcoded default
_ARGPARSE_DEFAULTS: dict[str, Any] = {
    "host": None,
    "model": DEFAULT_MODEL,
    "embed_model": DEFAULT_EMBED_MODEL,
    "embed_text": DEFAULT_EMBED_TEXT,
    "no_embed": False,
    "mode": "chat",
    "think": "low",
    "system_file": DEFAULT_SYSTEM_FILE,
    "chat_timeout": 30.0,
    "connect_timeout": 5.0,
    "on_failure": "keep",
    "color": False,
    "no_color": False,
    "quiet": False,
}


# --- Internal helpers ---


def global_config_dir() -> Path:
    """Return the global config directory, respecting XDG_CONFIG_HOME."""
    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        return Path(xdg) / "ollachat"
    return Path.home() / ".config" / "ollachat"


def _type_name(expected: type | tuple[type, ...]) -> str:
    if isinstance(expected, tuple):
        return " or ".join(t.__name__ for t in expected)
    return expected.__name__


def _validate_config(config: dict, source: str) -> None:
    """Validate types, enumerated values and ranges in a parsed config dict.

    Raises ConfigError on the first bad value. Prints warnings for
    unknown keys.
    """
    for key, value in config.items():
        if key not in CONFIG_KEYS:
            print(f"warning: {source}: unknown config key {key!r}", file=sys.stderr)
            continue

        expected = CONFIG_KEYS[key]
        # bool is a subclass of int in Python, so isinstance(True, int) is True.
        if isinstance(value, bool) and expected is not bool:
            raise ConfigError(
                f"{source}: {key!r} expected {_type_name(expected)}, got bool"
            )
        if not isinstance(value, expected):
            raise ConfigError(
                f"{source}: {key!r} expected {_type_name(expected)}, got {type(value).__name__}"
            )

        if key in _CHOICES and value not in _CHOICES[key]:
            allowed = ", ".join(_CHOICES[key])
            raise ConfigError(f"{source}: {key!r} must be one of {allowed}, got {value!r}")
        if key in _POSITIVE_KEYS and value <= 0:
            raise ConfigError(f"{source}: {key!r} must be positive, got {value}")


def _resolve_paths(config: dict, config_dir: Path) -> None:
    """Resolve a relative system_file against the config file's directory."""
    if "system_file" in config:
        p = Path(config["system_file"]).expanduser()
        if not p.is_absolute():
            p = config_dir / p
        config["system_file"] = str(p)


def _load_single(path: Path, label: str) -> dict:
    """Load and validate a single TOML config file. Returns empty dict if missing."""
    if not path.is_file():
        return {}
    try:
        with open(path, "rb") as f:
            config = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"{label}: invalid TOML: {e}") from e
    except OSError as e:
        raise ConfigError(f"{label}: cannot read file: {e}") from e

    _validate_config(config, label)
    return {k: v for k, v in config.items() if k in CONFIG_KEYS}


# --- Public API ---


def load_config(base_dir: Path) -> dict:
    """Load and merge global + project config.

    Returns a flat dict with config-canonical keys. Only keys that were
    actually set in config files are included (no defaults injected).
    """
    global_path = global_config_dir() / "config.toml"
    global_config = _load_single(global_path, str(global_path))
    if global_config:
        _resolve_paths(global_config, global_path.parent)

    project_path = Path(base_dir).resolve() / "ollachat.toml"
    project_config = _load_single(project_path, str(project_path))
    if project_config:
        _resolve_paths(project_config, project_path.parent)

    return {**global_config, **project_config}


def apply_config_to_args(args: argparse.Namespace, config: dict) -> None:
    """Apply config values to argparse namespace where CLI didn't set a value.

    After processing all config keys, sweeps remaining _UNSET sentinels
    and replaces them with hardcoded defaults from _ARGPARSE_DEFAULTS.
    """

    def _is_unset(dest: str) -> bool:
        return getattr(args, dest, _UNSET) is _UNSET

    # A single config key controls the mutually exclusive --color/--no-color pair
    if "color" in config:
        color_val = config["color"]
        if _is_unset("color") and _is_unset("no_color"):
            args.color = color_val
            args.no_color = not color_val

    for key, value in config.items():
        if key == "color":
            continue
        if _is_unset(key):
            setattr(args, key, value)

    for dest, default in _ARGPARSE_DEFAULTS.items():
        if _is_unset(dest):
            setattr(args, dest, default)


def think_value(think: str):
    """Map the think setting to what the server accepts (False or a level)."""
    if think == "off":
        return False
    return think


def load_system_message(path: str | Path) -> str:
    """Read the system message file, stripped at both ends.

    Line endings are kept as they are in the file. Raises OSError (or
    UnicodeDecodeError) if the file can't be read.
    """
    return Path(path).read_bytes().decode("utf-8").strip()


def generate_config(project: bool = False) -> str:
    """Return a commented-out template config string."""
    lines = [
        "# ollachat configuration file",
        f"# {'Project' if project else 'Global'} config: "
        f"{'<project>/ollachat.toml' if project else '~/.config/ollachat/config.toml'}",
        "#",
        "# CLI flags override these values. Only uncomment what you need.",
        "",
        "# --- Server ---",
        '# host = "http://127.0.0.1:11434"   # default: $OLLAMA_HOST or this',
        "# connect_timeout = 5",
        "",
        "# --- Models ---",
        f'# model = "{DEFAULT_MODEL}"',
        f'# embed_model = "{DEFAULT_EMBED_MODEL}"',
        f'# embed_text = "{DEFAULT_EMBED_TEXT}"',
        "# no_embed = false",
        "",
        "# --- Chat ---",
        '# mode = "chat"             # "chat" | "generate"',
        '# think = "low"             # "off" | "low" | "medium" | "high"',
        f'# system_file = "{DEFAULT_SYSTEM_FILE}"',
        "# chat_timeout = 30",
        '# on_failure = "keep"       # "keep" | "rollback"',
        "",
        "# --- UI ---",
        "# color = true       # true = force color, false = force no-color, absent = auto",
        "# quiet = false",
        "",
    ]
    return "\n".join(lines)
