"""Process-wide configuration for the candle chart server.

Values come from ``CANDLE_CHART_*`` environment variables first, then from an
INI file (``config.ini`` next to this module unless ``config_file`` says
otherwise), then from the defaults below. The resulting :class:`Settings`
object is built once at startup and handed to ``main.create_app``; nothing
reads configuration from module globals while a request is being served.
"""

from __future__ import annotations

import configparser
import logging
import re
from datetime import timedelta
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple, Type, Union

from pydantic import Field, field_validator
from pydantic.fields import FieldInfo
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

REPO_ROOT = Path(__file__).resolve().parent
DEFAULT_CONFIG_PATH = REPO_ROOT / "config.ini"
DEFAULT_DATA_DIR = REPO_ROOT / "candle_data"
DEFAULT_TEMPLATE_PATH = REPO_ROOT / "views" / "chart.html"
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8080
DEFAULT_LOG_LEVEL = "INFO"

# Bucket widths understood by the trading backend out of the box.
DEFAULT_DURATIONS: Mapping[str, timedelta] = MappingProxyType(
    {
        "1s": timedelta(seconds=1),
        "1m": timedelta(minutes=1),
        "1h": timedelta(hours=1),
    }
)

_SECONDS_PATTERN = re.compile(r"[0-9]+(\.[0-9]*)?")


def _resolve_path(value: str, base: Path) -> Path:
    path = Path(value).expanduser()
    if not path.is_absolute():
        path = base / path
    return path


class IniSettingsSource(PydanticBaseSettingsSource):
    """Reads ``[web]``, ``[data]``, ``[log]`` and ``[durations]`` from the INI file.

    Relative paths in ``[data]`` are resolved against the file's directory.
    A missing file contributes nothing.
    """

    OPTIONS = {
        ("web", "host"): "host",
        ("web", "port"): "port",
        ("data", "candle_dir"): "data_dir",
        ("data", "template"): "template_path",
        ("log", "level"): "log_level",
    }
    PATH_FIELDS = {"data_dir", "template_path"}

    def get_field_value(self, field: FieldInfo, field_name: str) -> Tuple[Any, str, bool]:
        return None, field_name, False

    def __call__(self) -> Dict[str, Any]:
        path = Path(self.current_state.get("config_file") or DEFAULT_CONFIG_PATH)
        if not path.exists():
            logging.debug("No configuration file at %s; using defaults", path)
            return {}

        # Keys under [durations] are case sensitive ("1m" vs "1M").
        parser = configparser.ConfigParser()
        parser.optionxform = str  # type: ignore[assignment]
        parser.read(path, encoding="utf-8")
        logging.debug("Loaded configuration from %s", path)
        base = path.resolve().parent

        values: Dict[str, Any] = {}
        for (section, option), field_name in self.OPTIONS.items():
            raw = parser.get(section, option, fallback=None)
            if raw is None:
                continue
            values[field_name] = _resolve_path(raw, base) if field_name in self.PATH_FIELDS else raw
        if parser.has_section("durations"):
            values["durations"] = dict(parser["durations"])
        return values


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="CANDLE_CHART_", frozen=True, extra="ignore")

    config_file: Path = DEFAULT_CONFIG_PATH
    host: str = DEFAULT_HOST
    port: int = Field(DEFAULT_PORT, gt=0, lt=65536)
    data_dir: Path = DEFAULT_DATA_DIR
    template_path: Path = DEFAULT_TEMPLATE_PATH
    log_level: str = DEFAULT_LOG_LEVEL
    durations: Mapping[str, timedelta] = Field(
        default_factory=lambda: dict(DEFAULT_DURATIONS),
        validate_default=True,
    )

    @field_validator("log_level")
    @classmethod
    def _upper_log_level(cls, value: str) -> str:
        return value.upper()

    @field_validator("durations", mode="before")
    @classmethod
    def _seconds_to_timedelta(cls, value: Any) -> Any:
        # INI values are plain seconds ("60", "0.5").
        if not isinstance(value, Mapping):
            return value
        return {
            key: float(raw) if isinstance(raw, str) and _SECONDS_PATTERN.fullmatch(raw.strip()) else raw
            for key, raw in value.items()
        }

    @field_validator("durations")
    @classmethod
    def _merge_default_durations(cls, value: Mapping[str, timedelta]) -> Mapping[str, timedelta]:
        for key, duration in value.items():
            if duration <= timedelta(0):
                raise ValueError(f"duration {key!r} must be positive")
        return MappingProxyType({**DEFAULT_DURATIONS, **value})

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: Type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        return (init_settings, env_settings, IniSettingsSource(settings_cls))


def load_settings(config_file: Optional[Union[str, Path]] = None) -> Settings:
    """Build :class:`Settings`; ``config_file`` overrides ``CANDLE_CHART_CONFIG_FILE``.

    Raises:
        pydantic.ValidationError: a configured value is unusable.
    """
    if config_file is None:
        return Settings()
    return Settings(config_file=Path(config_file))
