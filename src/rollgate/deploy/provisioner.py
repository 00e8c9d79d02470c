"""Provisioning collaborator interface."""

from __future__ import annotations

import asyncio
import inspect
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any

from rollgate.lib.logging_config import get_logger
from rollgate.models.plan import ProvisioningResult

logger = get_logger(__name__)


class Provisioner(ABC):
    """Materializes a plan's program in an environment."""

    @abstractmethod
    async def deploy(
        self, environment: str, program: Callable[..., Any]
    ) -> ProvisioningResult:
        """Provision an environment.

        Args:
            environment: Target environment name.
            program: The plan's provisioning program.

        Returns:
            ProvisioningResult describing what was provisioned.

        Raises:
            Exception: Any provisioning failure. The orchestrator does not
                retry it.
        """


class CallableProvisioner(Provisioner):
    """Provisioner that runs the program itself.

    The program is called with the environment name. A ProvisioningResult
    return value is passed through; a dict becomes the result outputs.
    Synchronous programs run in a worker thread.
    """

    async def deploy(
        self, environment: str, program: Callable[..., Any]
    ) -> ProvisioningResult:
        logger.info(f"Provisioning environment {environment}")
        started = time.monotonic()

        if inspect.iscoroutinefunction(program):
            value = await program(environment)
        else:
            value = await asyncio.to_thread(program, environment)
            if inspect.isawaitable(value):
                value = await value

        duration = time.monotonic() - started
        if isinstance(value, ProvisioningResult):
            return value
        if value is None:
            outputs: dict[str, Any] = {}
        elif isinstance(value, dict):
            outputs = dict(value)
        else:
            outputs = {"result": value}

        logger.debug(f"Provisioned {environment} in {duration:.2f}s")
        return ProvisioningResult(
            environment=environment, outputs=outputs, duration=duration
        )
