"""
=============================================================================
CONFIGURATION SOURCE
=============================================================================

Named key/value settings with typed lookups and defaults.

Every server setting is namespaced by the service name, so one process can
run several independently tuned servers from a single source:

    billing.http.port=9000
    billing.http.numberOfAcceptors=2
    billing.https.port=9443
    reports.http.port=9100

    config = Configuration.from_properties("servers.properties")
    config.get_int("billing.http.port", 8080)      # 9000
    config.get_int("reports.http.port", 8080)      # 9100
    config.get_int("admin.http.port", 8080)        # 8080 (default)

=============================================================================
CONFIGURATION SOURCES
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │   Priority (highest to lowest):                                     │
    │                                                                     │
    │   1. Explicit overrides         config.with_overrides({...})        │
    │   2. Environment variables      HTTPFACTORY_billing__http__port=9000│
    │   3. Properties file            HTTPFACTORY_CONFIG=servers.properties│
    │   4. Defaults at each lookup    get_int(key, 8080)                  │
    └─────────────────────────────────────────────────────────────────────┘

Lookups never fail for a missing key; they fail with ConfigurationError
when a value is present but cannot be converted.

=============================================================================
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, Iterator, Mapping, Optional, Tuple, Union

from .errors import ConfigurationError


logger = logging.getLogger(__name__)


ENV_PREFIX = "HTTPFACTORY_"
CONFIG_PATH_ENV = "HTTPFACTORY_CONFIG"

_TRUE_VALUES = {"true", "yes", "on", "1"}
_FALSE_VALUES = {"false", "no", "off", "0"}


class Configuration(Mapping[str, Any]):
    """
    Read-only key/value configuration with typed getters.

    Values may be strings (from files or the environment) or already
    typed Python values (from code). Blank strings count as unset.
    """

    def __init__(self, values: Optional[Mapping[str, Any]] = None):
        self._values: Dict[str, Any] = dict(values or {})

    # =========================================================================
    # CONSTRUCTORS
    # =========================================================================

    @classmethod
    def from_properties(cls, path: Union[str, Path]) -> "Configuration":
        """
        Load a Java-style properties file.

        Supports ``key=value`` and ``key: value`` lines, ``#`` and ``!``
        comments, and backslash line continuation.
        """
        values: Dict[str, str] = {}
        pending = ""

        with open(path, "r", encoding="utf-8") as fh:
            for raw_line in fh:
                line = raw_line.strip()
                if pending:
                    line = pending + line
                    pending = ""
                if not line or line[0] in "#!":
                    continue
                if line.endswith("\\"):
                    pending = line[:-1]
                    continue

                key, value = _split_property(line)
                values[key] = value

        if pending:
            key, value = _split_property(pending)
            values[key] = value

        logger.debug(f"Loaded {len(values)} settings from {path}")
        return cls(values)

    @classmethod
    def from_env(
        cls,
        prefix: str = ENV_PREFIX,
        environ: Optional[Mapping[str, str]] = None,
    ) -> "Configuration":
        """
        Collect settings from environment variables.

        The part after the prefix is used verbatim with ``__`` standing in
        for ``.``:

            HTTPFACTORY_billing__http__connectionIdleTime=60000
                → billing.http.connectionIdleTime = "60000"
        """
        environ = os.environ if environ is None else environ
        values = {
            name[len(prefix):].replace("__", "."): value
            for name, value in environ.items()
            if name.startswith(prefix) and name != CONFIG_PATH_ENV
        }
        return cls(values)

    @classmethod
    def load_default(cls) -> "Configuration":
        """
        The process-wide default: the properties file named by
        ``HTTPFACTORY_CONFIG`` (if set) overlaid with ``HTTPFACTORY_*``
        environment variables.
        """
        config = cls()
        path = os.getenv(CONFIG_PATH_ENV)
        if path:
            config = cls.from_properties(path)
        return config.with_overrides(cls.from_env())

    def with_overrides(self, overrides: Mapping[str, Any]) -> "Configuration":
        """New configuration where ``overrides`` win over this one."""
        merged = dict(self._values)
        merged.update(overrides)
        return Configuration(merged)

    # =========================================================================
    # MAPPING PROTOCOL
    # =========================================================================

    def __getitem__(self, key: str) -> Any:
        return self._values[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"Configuration({len(self._values)} keys)"

    # =========================================================================
    # TYPED LOOKUPS
    # =========================================================================

    def _lookup(self, key: str) -> Any:
        value = self._values.get(key)
        if isinstance(value, str):
            value = value.strip()
            if not value:
                return None
        return value

    def get_string(self, key: str, default: Optional[str] = None) -> Optional[str]:
        value = self._lookup(key)
        return default if value is None else str(value)

    def get_int(self, key: str, default: Optional[int] = None) -> Optional[int]:
        value = self._lookup(key)
        if value is None:
            return default
        if isinstance(value, bool):
            raise ConfigurationError(key, f"expected an integer, got {value!r}")
        try:
            return int(value)
        except (TypeError, ValueError):
            raise ConfigurationError(key, f"expected an integer, got {value!r}")

    def get_float(self, key: str, default: Optional[float] = None) -> Optional[float]:
        value = self._lookup(key)
        if value is None:
            return default
        try:
            return float(value)
        except (TypeError, ValueError):
            raise ConfigurationError(key, f"expected a number, got {value!r}")

    def get_bool(self, key: str, default: Optional[bool] = None) -> Optional[bool]:
        """Accepts true/false, yes/no, on/off and 1/0 in any case."""
        value = self._lookup(key)
        if value is None:
            return default
        if isinstance(value, bool):
            return value
        text = str(value).lower()
        if text in _TRUE_VALUES:
            return True
        if text in _FALSE_VALUES:
            return False
        raise ConfigurationError(key, f"expected a boolean, got {value!r}")


def _split_property(line: str) -> Tuple[str, str]:
    """Split ``key=value`` / ``key: value`` at the first separator."""
    positions = [i for i in (line.find("="), line.find(":")) if i != -1]
    if not positions:
        return line.strip(), ""
    sep = min(positions)
    return line[:sep].strip(), line[sep + 1:].strip()
