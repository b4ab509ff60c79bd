from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from dotenv import load_dotenv
from omegaconf import DictConfig, OmegaConf
from pydantic import BaseModel, ConfigDict

from .models import Credentials

CONFIG_PATH = Path(__file__).resolve().parent / "config" / "config.yaml"

# Environment variable -> dotted config key
ENV_OVERRIDES: Dict[str, str] = {
    "BPA_CLIENT_ID": "credentials.client_id",
    "BPA_CLIENT_SECRET": "credentials.client_secret",
    "BPA_TSG_ID": "credentials.tsg_id",
    "BPA_AUTH_URL": "auth.token_url",
    "BPA_API_URL": "api.base_url",
    "PORT": "server.port",
    "STATIC_DIR": "server.static_dir",
    "LOG_LEVEL": "server.log_level",
    "UPLOAD_DIR": "storage.upload_root",
    "SCRATCH_DIR": "storage.scratch_root",
}


class _Section(BaseModel):
    model_config = ConfigDict(frozen=True)


class AuthSettings(_Section):
    token_url: str


class ApiSettings(_Section):
    base_url: str
    timeout_seconds: float = 30.0

    def url(self, *parts: str) -> str:
        return "/".join([self.base_url.rstrip("/"), *(part.strip("/") for part in parts)])


class PollingSettings(_Section):
    interval_seconds: float = 3.0
    max_attempts: int = 20


class ArchiveSettings(_Section):
    cli_info_dir: str = "tmp/cli"
    cli_info_suffix: str = ".txt"


class StorageSettings(_Section):
    upload_root: Path
    scratch_root: Path


class ServerSettings(_Section):
    port: int = 3000
    static_dir: Path = Path("public")
    log_level: str = "INFO"


class Settings(_Section):
    auth: AuthSettings
    api: ApiSettings
    polling: PollingSettings
    archive: ArchiveSettings
    storage: StorageSettings
    server: ServerSettings
    credentials: Credentials


@lru_cache(maxsize=1)
def _load_default_config() -> DictConfig:
    if not CONFIG_PATH.exists():
        raise FileNotFoundError(f"Default config not found at {CONFIG_PATH}")
    return OmegaConf.load(CONFIG_PATH)


def _nest(dotted: Mapping[str, Any]) -> Dict[str, Any]:
    nested: Dict[str, Any] = {}
    for key, value in dotted.items():
        *parents, leaf = key.split(".")
        node = nested
        for part in parents:
            node = node.setdefault(part, {})
        node[leaf] = value
    return nested


def environment_overrides(environ: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    """Collect config overrides from environment variables that are set and non-empty."""
    environ = os.environ if environ is None else environ
    dotted = {key: environ[env] for env, key in ENV_OVERRIDES.items() if environ.get(env)}
    return _nest(dotted)


def make_runtime_config(overrides: Dict[str, Any]) -> DictConfig:
    base = OmegaConf.create(OmegaConf.to_container(_load_default_config(), resolve=False))
    OmegaConf.set_struct(base, True)
    return DictConfig(OmegaConf.merge(base, OmegaConf.create(overrides)))


def load_settings(
    overrides: Optional[Dict[str, Any]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> Settings:
    """
    Build validated settings from defaults, the environment and explicit overrides.

    Later layers win: ``config.yaml`` < environment (including ``.env``) <
    ``overrides``. Unknown keys in ``overrides`` are rejected by OmegaConf.

    Note:
        Missing credentials are not an error here; the pipeline reports
        them per request so the service can still start and serve health
        checks while misconfigured.
    """
    if environ is None:
        load_dotenv()
    config = make_runtime_config(environment_overrides(environ))
    if overrides:
        config = DictConfig(OmegaConf.merge(config, OmegaConf.create(overrides)))
    container = OmegaConf.to_container(config, resolve=True)
    return Settings.model_validate(container)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return load_settings()
