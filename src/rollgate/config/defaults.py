"""Default configuration values for Rollgate."""

import logging

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILENAME = "rollgate.yaml"

# Default approval policies, durations in seconds
DEFAULT_APPROVAL_POLICIES: dict[str, dict[str, object]] = {
    "production": {
        "environment": "production",
        "required_approvers": 2,
        "approver_groups": ["infrastructure-leads", "security-team"],
        "timeout_duration": 24 * 3600,
        "escalation_rules": [
            {
                "trigger_after": 4 * 3600,
                "escalatees": ["cto", "engineering-director"],
                "action": "notify",
            }
        ],
    },
    "staging": {
        "environment": "staging",
        "required_approvers": 1,
        "approver_groups": ["infrastructure-leads"],
        "timeout_duration": 2 * 3600,
        "escalation_rules": [
            {
                "trigger_after": 3600,
                "escalatees": ["infrastructure-leads"],
                "action": "auto_approve",
            }
        ],
    },
}

DEFAULT_APPROVERS = ["developer"]

# Recovery steps returned after a from-scratch recreation
RECREATE_RECOVERY_STEPS = [
    "Database schemas have been recreated from scratch",
    "Run migrations to restore schema to latest version",
    "Seed test data as needed",
    "Verify application connectivity",
]

# Rollback estimate per domain, in seconds
ROLLBACK_SECONDS_PER_DOMAIN = 30

# Versions rolled back per domain above which data loss risk rises
DATA_LOSS_THRESHOLDS = [(10, "critical"), (5, "high"), (2, "moderate")]


def get_default_policy(environment: str) -> dict[str, object] | None:
    """Return a copy of the default approval policy for an environment.

    Args:
        environment: Environment name

    Returns:
        Policy fields, or None when no default exists for the environment
    """
    policy = DEFAULT_APPROVAL_POLICIES.get(environment)
    if policy is None:
        logger.debug(f"No default approval policy for environment '{environment}'")
        return None
    return dict(policy)
