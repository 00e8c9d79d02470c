"""SQL-statement schema manager."""

from __future__ import annotations

import asyncio
import inspect
import re
from collections.abc import Callable
from typing import Any

from rollgate.deploy.rollback.base import SchemaManager
from rollgate.lib.logging_config import get_logger

logger = get_logger(__name__)

SCHEMA_SUFFIX = "_schema"
_IDENTIFIER = re.compile(r"^[a-z_][a-z0-9_]{0,62}$")

StatementExecutor = Callable[[str], Any]


def schema_name(domain: str) -> str:
    """Return the schema name of a domain."""
    return f"{domain}{SCHEMA_SUFFIX}"


class SqlSchemaManager(SchemaManager):
    """Recreate domain schemas by running SQL through an executor.

    The executor receives one statement at a time and may be a plain
    function or a coroutine function. Without one, statements are only
    recorded and logged, and the manager is a dry run.
    """

    def __init__(self, execute: StatementExecutor | None = None) -> None:
        self.execute = execute
        self.statements: list[str] = []

    @property
    def dry_run(self) -> bool:  # type: ignore[override]
        return self.execute is None

    async def _run(self, statement: str) -> None:
        logger.debug(f"Executing: {statement}")
        self.statements.append(statement)
        if self.execute is None:
            return
        if inspect.iscoroutinefunction(self.execute):
            await self.execute(statement)
        else:
            await asyncio.to_thread(self.execute, statement)

    def _checked_name(self, domain: str) -> str:
        name = schema_name(domain)
        if not _IDENTIFIER.match(name):
            raise ValueError(f"'{name}' is not a safe schema identifier")
        return name

    async def recreate_schema(self, domain: str) -> None:
        name = self._checked_name(domain)
        logger.info(f"Recreating schema from scratch: {name}")
        await self._run(f"DROP SCHEMA IF EXISTS {name} CASCADE")
        await self._run(f"CREATE SCHEMA IF NOT EXISTS {name}")

    async def validate_schema(self, domain: str) -> None:
        name = self._checked_name(domain)
        logger.debug(f"Validated rollback capability for schema: {name}")
