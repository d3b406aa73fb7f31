"""
Settings for docstore using pydantic-settings
"""

import collections.abc
import json
import logging
import os
import pprint
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Literal, Optional, Tuple

from pydantic import Field, field_validator
from pydantic.aliases import AliasChoices
from pydantic_settings import BaseSettings, SettingsConfigDict

LOCALCONFIG = "docstore_config.json"
GLOBALCONFIG = ".docstore_config.json"

logger = logging.getLogger(__name__.split(".")[0])
log_levels = {
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "CRITICAL": logging.CRITICAL,
    "DEBUG": logging.DEBUG,
    "ERROR": logging.ERROR,
    None: logging.NOTSET,
}


class DatabaseSettings(BaseSettings):
    """Database connection settings"""

    host: str = "localhost"
    password: Optional[str] = None
    user: Optional[str] = None
    port: int = 5432
    dbname: str = "postgres"
    # schema reported by the catalog for the schema-qualified index form
    schema_name: str = "public"
    use_tls: Optional[bool] = None
    connect_timeout: int = 10

    model_config = SettingsConfigDict(
        env_prefix="DOCSTORE_",
        case_sensitive=False,
        extra="allow",
    )


class ProcedureSettings(BaseSettings):
    """Names of the server-side procedures referenced by compiled statements"""

    dispatch: str = "call_func"
    relations: str = "get_documents"

    model_config = SettingsConfigDict(
        env_prefix="DOCSTORE_PROCEDURE_",
        case_sensitive=False,
        extra="allow",
    )


class DocStoreSettings(BaseSettings):
    """Main docstore settings using Pydantic"""

    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    procedures: ProcedureSettings = Field(default_factory=ProcedureSettings)

    loglevel: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        validation_alias=AliasChoices("loglevel", "DOCSTORE_LOG_LEVEL"),
    )
    type_awareness: bool = Field(
        default=False,
        validation_alias=AliasChoices("type_awareness", "DOCSTORE_TYPE_AWARENESS"),
    )
    # statement timeout in milliseconds, 0 disables it
    timeout: int = 30000
    default_order: str = "$created"

    model_config = SettingsConfigDict(
        env_prefix="DOCSTORE_",
        case_sensitive=False,
        extra="allow",
        validate_assignment=True,
    )

    @field_validator("loglevel")
    @classmethod
    def validate_loglevel(cls, v: str) -> str:
        """Validate and set logging level"""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v not in valid_levels:
            raise ValueError(f"'{v}' is not a valid logging value {tuple(valid_levels)}")
        logger.setLevel(v)
        return v

    @field_validator("timeout")
    @classmethod
    def validate_timeout(cls, v: int) -> int:
        if v < 0:
            raise ValueError("timeout must not be negative")
        return v


_UNSET = object()


class ConfigWrapper(collections.abc.MutableMapping):
    """
    Dict-like view of :class:`DocStoreSettings` addressed by dotted keys.

    ``config["database.host"]`` reads a nested setting. Dotted keys the model
    does not declare are kept aside, so applications may store their own values.
    """

    def __init__(self, settings: DocStoreSettings):
        self._settings = settings
        self._extra: Dict[str, Any] = {}

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            raise AttributeError(name)
        return getattr(self._settings, name)

    def _owner(self, key: str) -> Optional[Tuple[BaseSettings, str]]:
        # the settings group declaring the last part of key, None if undeclared
        *groups, name = key.split(".")
        group = self._settings
        for part in groups:
            group = getattr(group, part, None)
            if not isinstance(group, BaseSettings):
                return None
        return (group, name) if name in type(group).model_fields else None

    def __getitem__(self, key: str) -> Any:
        if key in self._extra:
            return self._extra[key]
        owner = self._owner(key)
        if owner is None:
            raise KeyError(f"Unknown setting {key!r}")
        return getattr(*owner)

    def __setitem__(self, key: str, value: Any) -> None:
        logger.debug(f"Setting {key} to {value}")
        owner = self._owner(key)
        if owner is None:
            self._extra[key] = value
        else:
            setattr(*owner, value)

    def __delitem__(self, key: str) -> None:
        if key not in self._extra:
            raise KeyError(f"Setting {key!r} cannot be deleted")
        del self._extra[key]

    def __iter__(self) -> Iterator[str]:
        return iter([*self._flatten(), *self._extra])

    def __len__(self) -> int:
        return len(self._flatten()) + len(self._extra)

    def _flatten(self) -> Dict[str, Any]:
        """Declared settings as a flat mapping of dotted keys."""

        def walk(values: dict, prefix: str) -> Iterator[Tuple[str, Any]]:
            for name, value in values.items():
                if isinstance(value, dict):
                    yield from walk(value, f"{prefix}{name}.")
                else:
                    yield prefix + name, value

        return dict(walk(self._settings.model_dump(), ""))

    def __str__(self) -> str:
        return pprint.pformat({**self._flatten(), **self._extra}, indent=4)

    def __repr__(self) -> str:
        return self.__str__()

    def save(self, filename: str, verbose: bool = False) -> None:
        """
        Write the declared settings to a JSON file with dotted keys.

        :param filename: path of the JSON settings file.
        :param verbose: log the path after saving
        """
        with open(filename, "w") as fid:
            json.dump(self._flatten(), fid, indent=4)
        if verbose:
            logger.info(f"Saved settings in {filename}")

    def load(self, filename: str) -> None:
        """
        Update the settings from a JSON file with dotted keys.

        :param filename: path of the JSON settings file.
        """
        with open(filename, "r") as fid:
            data = json.load(fid)
        logger.info(f"docstore is configured from {os.path.abspath(filename)}")
        for key, value in data.items():
            self[key] = value

    @contextmanager
    def __call__(self, **kwargs: Any) -> Iterator["ConfigWrapper"]:
        """
        Override settings inside a ``with`` block. A double underscore stands for the dot.

        Example:
        >>> with docstore.config(type_awareness=True, database__schema_name="app"):
        ...     prepare_select(Document, "Person")
        """
        changes = {k.replace("__", "."): v for k, v in kwargs.items()}
        previous = {key: self.get(key, _UNSET) for key in changes}
        try:
            for key, value in changes.items():
                self[key] = value
            yield self
        finally:
            for key, value in previous.items():
                if value is _UNSET:
                    self._extra.pop(key, None)
                else:
                    self[key] = value


_settings = DocStoreSettings()

config = ConfigWrapper(_settings)

config_files = (os.path.expanduser(n) for n in (LOCALCONFIG, os.path.join("~", GLOBALCONFIG)))
try:
    config.load(next(n for n in config_files if os.path.exists(n)))
except StopIteration:
    logger.debug("No config file was found.")

logger.setLevel(log_levels[config["loglevel"]])
