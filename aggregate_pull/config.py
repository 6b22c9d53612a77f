"""YAML config loader."""

import os
from dataclasses import dataclass, field
from typing import List, Optional

import yaml
from dotenv import load_dotenv


@dataclass
class ServerConfig:
    url: str = ""
    username: str = ""
    password: str = ""

    @property
    def has_credentials(self) -> bool:
        return bool(self.username)


@dataclass
class PullConfig:
    max_http_connections: int = 8
    batch_size: int = 100
    include_incomplete: bool = False
    resume_last_pull: bool = True
    timeout: int = 120
    user_agent: str = "AggregatePull/1.0"


@dataclass
class AppConfig:
    storage_dir: str = "briefcase"
    db_path: str = "aggregate_pull.db"
    log_dir: str = "logs"
    log_level: str = "INFO"
    log_file: str = "pull.log"
    forms: List[str] = field(default_factory=list)
    server: ServerConfig = field(default_factory=ServerConfig)
    pull: PullConfig = field(default_factory=PullConfig)


def load_config(config_path: Optional[str] = "config.yaml") -> AppConfig:
    load_dotenv()

    raw = {}
    if config_path and os.path.exists(config_path):
        with open(config_path) as f:
            raw = yaml.safe_load(f) or {}

    srv_raw = raw.get("server", {}) or {}
    server = ServerConfig(**{k: v for k, v in srv_raw.items() if k in ServerConfig.__dataclass_fields__})
    # Credentials from the environment win over the config file
    server.url = os.environ.get("AGGREGATE_URL", server.url)
    server.username = os.environ.get("AGGREGATE_USERNAME", server.username)
    server.password = os.environ.get("AGGREGATE_PASSWORD", server.password)

    pull_raw = raw.get("pull", {}) or {}
    pull = PullConfig(**{k: v for k, v in pull_raw.items() if k in PullConfig.__dataclass_fields__})

    return AppConfig(
        storage_dir=raw.get("storage_dir", "briefcase"),
        db_path=raw.get("db_path", "aggregate_pull.db"),
        log_dir=raw.get("log_dir", "logs"),
        log_level=str(raw.get("log_level", "INFO")),
        log_file=raw.get("log_file", "pull.log"),
        forms=list(raw.get("forms", []) or []),
        server=server,
        pull=pull,
    )
