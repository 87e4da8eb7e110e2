"""
Connection Credentials
======================

Credential sources for the connection cache.

A credential source exposes get_credentials(), returning a nested mapping:

    {environment: {schema_label: {access_mode: DatabaseCredentials}}}

EnvCredentialsProvider reads it from environment variables (a .env file is
loaded first):

    DBCRED__LIVE__APP__WRITE__HOST=db-primary.internal
    DBCRED__LIVE__APP__WRITE__NAME=app
    DBCRED__LIVE__APP__WRITE__USER=app_rw
    DBCRED__LIVE__APP__WRITE__PASSWORD=...
    DBCRED__LIVE__APP__READ__HOST=db-replica.internal
    ...

PORT is optional (default 5432).
"""

import os
import logging
from dataclasses import dataclass
from typing import Dict, Mapping, Optional, Protocol

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

ENV_PREFIX = "DBCRED__"

CredentialsMap = Mapping[str, Mapping[str, Mapping[str, "DatabaseCredentials"]]]


@dataclass(frozen=True)
class DatabaseCredentials:
    """Connection parameters for one environment/schema/mode combination."""
    host: str
    database: str
    user: str
    password: str = ""
    port: int = 5432

    def as_connect_kwargs(self) -> Dict[str, str | int]:
        """Keyword arguments for psycopg2.connect()."""
        return {
            "host": self.host,
            "port": self.port,
            "database": self.database,
            "user": self.user,
            "password": self.password,
        }

    def __repr__(self) -> str:
        return (
            f"DatabaseCredentials(host={self.host!r}, database={self.database!r}, "
            f"user={self.user!r}, port={self.port})"
        )


class CredentialsProvider(Protocol):
    def get_credentials(self) -> CredentialsMap:
        ...


class StaticCredentialsProvider:
    """Serves credentials from an in-memory mapping."""

    def __init__(self, credentials: CredentialsMap):
        self._credentials = {
            location.upper(): {
                label.upper(): {mode.upper(): creds for mode, creds in modes.items()}
                for label, modes in labels.items()
            }
            for location, labels in credentials.items()
        }

    def get_credentials(self) -> CredentialsMap:
        return self._credentials


class EnvCredentialsProvider:
    """Reads credentials from DBCRED__<ENV>__<SCHEMA>__<MODE>__<FIELD> variables."""

    def __init__(self, environ: Optional[Mapping[str, str]] = None):
        self._environ = environ
        self._credentials: Optional[CredentialsMap] = None

    def _collect(self) -> CredentialsMap:
        env = os.environ if self._environ is None else self._environ
        raw: Dict[tuple, Dict[str, str]] = {}

        for name, value in env.items():
            if not name.startswith(ENV_PREFIX):
                continue
            parts = name[len(ENV_PREFIX):].split("__")
            if len(parts) != 4:
                logger.warning(f"Ignoring malformed credential variable {name}")
                continue
            location, label, mode, field_name = (p.upper() for p in parts)
            raw.setdefault((location, label, mode), {})[field_name] = value

        credentials: Dict[str, Dict[str, Dict[str, DatabaseCredentials]]] = {}
        for (location, label, mode), fields in raw.items():
            missing = [f for f in ("HOST", "NAME", "USER") if not fields.get(f)]
            if missing:
                logger.warning(
                    f"Incomplete credentials for {location}/{label}/{mode}: "
                    f"missing {', '.join(missing)}"
                )
                continue
            credentials.setdefault(location, {}).setdefault(label, {})[mode] = DatabaseCredentials(
                host=fields["HOST"],
                database=fields["NAME"],
                user=fields["USER"],
                password=fields.get("PASSWORD", ""),
                port=int(fields.get("PORT", "5432")),
            )

        return credentials

    def get_credentials(self) -> CredentialsMap:
        if self._credentials is None:
            self._credentials = self._collect()
            logger.debug(
                f"Loaded database credentials for locations: {sorted(self._credentials)}"
            )
        return self._credentials
