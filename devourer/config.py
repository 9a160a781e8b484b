"""Config management for Devourer.

Reads `config.ini` from DATA_DIR (beside main.py unless the DATA_DIR
environment variable points elsewhere).
"""

from __future__ import annotations

import configparser
import dataclasses
import os
import pathlib
import sys
from typing import Optional

from .logging_config import get_logger

logger = get_logger(__name__)


def _get_project_root() -> pathlib.Path:
    if getattr(sys, "frozen", False):
        return pathlib.Path(sys.executable).resolve().parent
    return pathlib.Path(__file__).resolve().parents[1]


PROJECT_ROOT = _get_project_root()

# DATA_DIR holds all persistent state (config.ini, library.db, devourer.log).
DATA_DIR = pathlib.Path(os.environ.get("DATA_DIR", str(PROJECT_ROOT)))
DEFAULT_CONFIG_PATH = DATA_DIR / "config.ini"
DEFAULT_PROVIDERS_DIR = pathlib.Path(__file__).resolve().parent / "plugins" / "providers"


@dataclasses.dataclass
class ServerConfig:
    host: str = "0.0.0.0"
    port: int = 8080


@dataclasses.dataclass
class ScannerConfig:
    ignore_patterns: tuple[str, ...] = (".DS_Store", "Thumbs.db", "@eaDir")
    # Pause after a provider returned series metadata, on top of rate limiting.
    series_delay_seconds: float = 1.0


@dataclasses.dataclass
class PreviewConfig:
    cover_width: int = 600
    cover_quality: int = 85
    page_width: int = 512
    page_quality: int = 70


@dataclasses.dataclass
class MonitoringConfig:
    enabled: bool = True
    startup_delay_seconds: float = 5.0


@dataclasses.dataclass
class MetadataConfig:
    providers_dir: pathlib.Path = DEFAULT_PROVIDERS_DIR
    request_timeout: float = 15.0
    google_books_api_key: str = ""
    user_agent: str = "Devourer/0.1"


@dataclasses.dataclass
class DevourerConfig:
    server: ServerConfig = dataclasses.field(default_factory=ServerConfig)
    scanner: ScannerConfig = dataclasses.field(default_factory=ScannerConfig)
    previews: PreviewConfig = dataclasses.field(default_factory=PreviewConfig)
    monitoring: MonitoringConfig = dataclasses.field(default_factory=MonitoringConfig)
    metadata: MetadataConfig = dataclasses.field(default_factory=MetadataConfig)

    @property
    def server_host(self) -> str:
        return self.server.host

    @property
    def server_port(self) -> int:
        return self.server.port

    @property
    def google_books_api_key(self) -> str:
        return self.metadata.google_books_api_key or os.environ.get(
            "GOOGLE_BOOKS_API_KEY", ""
        )


def _parse_bool(value: str, default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _parse_list(value: str) -> tuple[str, ...]:
    return tuple(p.strip() for p in value.split(",") if p.strip())


def load_config(config_path: Optional[pathlib.Path] = None) -> DevourerConfig:
    """Load configuration from config.ini.

    Defaults to `config.ini` in DATA_DIR.
    """
    path = config_path or DEFAULT_CONFIG_PATH
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    parser = configparser.ConfigParser()
    parser.read(path)

    server = ServerConfig(
        host=parser.get("server", "host", fallback="0.0.0.0"),
        port=parser.getint("server", "port", fallback=8080),
    )

    scanner = ScannerConfig(
        ignore_patterns=_parse_list(
            parser.get(
                "scanner",
                "ignore_patterns",
                fallback=".DS_Store,Thumbs.db,@eaDir",
            )
        ),
        series_delay_seconds=parser.getfloat(
            "scanner", "series_delay_seconds", fallback=1.0
        ),
    )

    previews = PreviewConfig(
        cover_width=parser.getint("previews", "cover_width", fallback=600),
        cover_quality=parser.getint("previews", "cover_quality", fallback=85),
        page_width=parser.getint("previews", "page_width", fallback=512),
        page_quality=parser.getint("previews", "page_quality", fallback=70),
    )

    monitoring = MonitoringConfig(
        enabled=_parse_bool(
            parser.get("monitoring", "enabled", fallback="true"), True
        ),
        startup_delay_seconds=parser.getfloat(
            "monitoring", "startup_delay_seconds", fallback=5.0
        ),
    )

    providers_dir = parser.get("metadata", "providers_dir", fallback="").strip()
    metadata = MetadataConfig(
        providers_dir=(
            pathlib.Path(providers_dir).expanduser()
            if providers_dir
            else DEFAULT_PROVIDERS_DIR
        ),
        request_timeout=parser.getfloat("metadata", "request_timeout", fallback=15.0),
        google_books_api_key=parser.get(
            "metadata", "google_books_api_key", fallback=""
        ).strip(),
        user_agent=parser.get(
            "metadata", "user_agent", fallback=MetadataConfig.user_agent
        ),
    )

    return DevourerConfig(
        server=server,
        scanner=scanner,
        previews=previews,
        monitoring=monitoring,
        metadata=metadata,
    )


def write_default_config(config_path: Optional[pathlib.Path] = None) -> pathlib.Path:
    """Write a config.ini populated with the defaults."""
    path = config_path or DEFAULT_CONFIG_PATH
    defaults = DevourerConfig()

    parser = configparser.ConfigParser()
    parser["server"] = {
        "host": defaults.server.host,
        "port": str(defaults.server.port),
    }
    parser["scanner"] = {
        "ignore_patterns": ",".join(defaults.scanner.ignore_patterns),
        "series_delay_seconds": str(defaults.scanner.series_delay_seconds),
    }
    parser["previews"] = {
        "cover_width": str(defaults.previews.cover_width),
        "cover_quality": str(defaults.previews.cover_quality),
        "page_width": str(defaults.previews.page_width),
        "page_quality": str(defaults.previews.page_quality),
    }
    parser["monitoring"] = {
        "enabled": "true",
        "startup_delay_seconds": str(defaults.monitoring.startup_delay_seconds),
    }
    parser["metadata"] = {
        "providers_dir": "",
        "request_timeout": str(defaults.metadata.request_timeout),
        "google_books_api_key": "",
    }

    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w") as handle:
        parser.write(handle)
    logger.debug(f"Wrote default config to {path}")
    return path

