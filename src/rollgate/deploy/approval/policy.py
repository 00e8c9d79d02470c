"""Per-environment approval policies."""

from __future__ import annotations

import threading

from rollgate.config.defaults import DEFAULT_APPROVAL_POLICIES
from rollgate.models.approval import ApprovalPolicy


class PolicyManager:
    """Mapping from environment name to ApprovalPolicy.

    Seeded with the production and staging defaults. Updates replace the
    whole policy; nothing is merged.
    """

    def __init__(self, policies: dict[str, ApprovalPolicy] | None = None) -> None:
        """Initialize with explicit policies, or the defaults when omitted."""
        if policies is None:
            policies = {
                env: ApprovalPolicy.model_validate(data)
                for env, data in DEFAULT_APPROVAL_POLICIES.items()
            }
        self._policies = dict(policies)
        self._lock = threading.Lock()

    def get_policy(self, environment: str) -> ApprovalPolicy | None:
        """Return the policy for an environment, or None when none is registered."""
        with self._lock:
            return self._policies.get(environment)

    def update_policy(self, environment: str, policy: ApprovalPolicy) -> None:
        """Register or replace the policy for an environment."""
        with self._lock:
            self._policies[environment] = policy

    @property
    def environments(self) -> list[str]:
        with self._lock:
            return sorted(self._policies)
