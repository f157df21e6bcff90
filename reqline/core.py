"""reqline core - config loading, variable resolution, auth."""

import base64
import os
import re
from pathlib import Path

import yaml
from dotenv import dotenv_values

GLOBAL_DIR = Path.home() / ".reqline"
GLOBAL_CONFIG = GLOBAL_DIR / "config.yaml"
DEFAULT_COOKIE_FILE = GLOBAL_DIR / "cookies.txt"

CWD_CONFIG_CANDIDATES = [
    ".reqline.yaml",
    ".reqline.yml",
    "reqline.yaml",
    "reqline.yml",
]

_VAR_RE = re.compile(r"\$\{([^}]+)\}|\$([A-Za-z_][A-Za-z0-9_]*)")


def resolve_path(candidates: list[Path]) -> Path | None:
    """Absolute path of the first candidate that exists on disk."""
    return next((p.resolve() for p in candidates if p.exists()), None)


def resolve_config_path(config_file: str | None) -> Path | None:
    """Pick the .reqline.yaml that supplies request defaults.

    A path given with -c/--config is the only candidate when present; a
    missing file there means no defaults. Otherwise the project file in the
    CWD shadows the per-user ~/.reqline/config.yaml.
    """
    if config_file:
        return resolve_path([Path(config_file)])
    return resolve_path([Path(c) for c in CWD_CONFIG_CANDIDATES] + [GLOBAL_CONFIG])


def load_config(config_path: str | Path | None) -> dict:
    """Read the `defaults:` section of a reqline config.

    The result always has a `defaults` dict. `_config_dir` records where
    the file lives so env_file and cookie_file can be given relative to it;
    it is None when no config is in use.
    """
    if config_path is None or not Path(config_path).exists():
        return {"defaults": {}, "_config_dir": None}
    path = Path(config_path)
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    return {
        "defaults": data.get("defaults") or {},
        "_config_dir": path.resolve().parent,
    }


def config_relative(value: str, config: dict) -> Path:
    """Expand ~ and anchor relative config paths at the config's directory."""
    p = Path(value).expanduser()
    config_dir = config.get("_config_dir")
    if not p.is_absolute() and config_dir:
        p = Path(config_dir) / p
    return p


def load_env(env_file: str | Path | None, base_dir: str | Path = ".") -> dict[str, str]:
    """Variables available to $VAR references in the config.

    The process environment, overlaid with the config's env_file when it
    exists. Keys declared without a value in the env file are skipped.
    """
    env = dict(os.environ)
    if not env_file:
        return env
    dotenv_path = Path(base_dir) / env_file
    if dotenv_path.exists():
        env.update({k: v for k, v in dotenv_values(str(dotenv_path)).items() if v is not None})
    return env


def resolve_value(value, env: dict[str, str]):
    """Expand $VAR / ${VAR} in a config string such as base_url or a token.

    Unset variables stay as written so the request shows what was missing.
    """
    if not isinstance(value, str):
        return value

    def _replace(m: re.Match) -> str:
        name = m.group(1) or m.group(2)
        return env.get(name, os.environ.get(name, m.group(0)))

    return _VAR_RE.sub(_replace, value)


def basic_auth_header(credentials: str) -> str:
    """'user:pass' -> 'Basic dXNlcjpwYXNz'."""
    return "Basic " + base64.b64encode(credentials.encode()).decode()


def build_auth_headers(
    auth_config: dict | None,
    env: dict[str, str],
) -> dict[str, str]:
    """Build authentication headers from the config auth section.

    Supports:
    - bearer: Authorization: Bearer <token>
    - api-key: custom header with token
    - basic: Authorization: Basic <b64>
    """
    if not auth_config:
        return {}

    auth_type = auth_config.get("type", "").lower()

    if auth_type == "bearer":
        token = resolve_value(auth_config.get("token", ""), env) or ""
        return {"Authorization": f"Bearer {token}"}

    if auth_type == "api-key":
        token = resolve_value(auth_config.get("token", ""), env) or ""
        header = auth_config.get("header", "X-API-Key")
        return {header: token}

    if auth_type == "basic":
        username = resolve_value(auth_config.get("username", ""), env) or ""
        password = resolve_value(auth_config.get("password", ""), env) or ""
        return {"Authorization": basic_auth_header(f"{username}:{password}")}

    return {}


def resolve_default_headers(defaults: dict, env: dict[str, str]) -> dict[str, str]:
    headers = defaults.get("headers") or {}
    return {k: str(resolve_value(v, env)) for k, v in headers.items()}
