"""
Conditional Access Module

Excludes an application (the storage account's Enterprise Application) from
every Conditional Access policy that targets all cloud apps.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Any, List, Optional, Sequence

logger = logging.getLogger(__name__)

POLICIES_PATH = "identity/conditionalAccess/policies"
ALL_APPLICATIONS = "All"
DEFAULT_MANAGED_PATTERNS = ("Microsoft-managed", "Microsoft Managed")

UPDATED = "updated"
WOULD_UPDATE = "would_update"
ALREADY_EXCLUDED = "already_excluded"
SKIPPED_MANAGED = "skipped_managed"
SKIPPED_NOT_ALL = "skipped_not_all"
FAILED = "failed"


@dataclass
class ExclusionOutcome:
    """What happened to one policy."""

    policy_id: str
    display_name: str
    action: str
    error: Optional[str] = None


@dataclass
class ExclusionReport:
    """Per-policy outcomes of one exclusion pass."""

    app_id: str
    outcomes: List[ExclusionOutcome] = field(default_factory=list)

    def by_action(self, action: str) -> List[ExclusionOutcome]:
        return [o for o in self.outcomes if o.action == action]

    @property
    def updated(self) -> List[ExclusionOutcome]:
        return self.by_action(UPDATED)

    @property
    def failed(self) -> List[ExclusionOutcome]:
        return self.by_action(FAILED)

    @property
    def succeeded(self) -> bool:
        return not self.failed


def _applications(policy: Dict[str, Any]) -> Dict[str, Any]:
    conditions = policy.get('conditions') or {}
    return conditions.get('applications') or {}


def is_microsoft_managed(display_name: str,
                         patterns: Sequence[str] = DEFAULT_MANAGED_PATTERNS) -> bool:
    """Case-insensitive substring match of the policy name against managed patterns."""
    name = (display_name or '').lower()
    return any(pattern.lower() in name for pattern in patterns)


def targets_all_applications(policy: Dict[str, Any]) -> bool:
    return ALL_APPLICATIONS in (_applications(policy).get('includeApplications') or [])


def excludes_application(policy: Dict[str, Any], app_id: str) -> bool:
    excluded = _applications(policy).get('excludeApplications') or []
    return app_id.lower() in (a.lower() for a in excluded)


def plan_action(policy: Dict[str, Any], app_id: str,
                managed_patterns: Sequence[str] = DEFAULT_MANAGED_PATTERNS) -> str:
    """
    Decide what the exclusion pass does with a policy.

    Returns:
        SKIPPED_MANAGED, SKIPPED_NOT_ALL, ALREADY_EXCLUDED or UPDATED
    """
    if is_microsoft_managed(policy.get('displayName', ''), managed_patterns):
        return SKIPPED_MANAGED
    if not targets_all_applications(policy):
        return SKIPPED_NOT_ALL
    if excludes_application(policy, app_id):
        return ALREADY_EXCLUDED
    return UPDATED


def build_exclusion_patch(policy: Dict[str, Any], app_id: str) -> Dict[str, Any]:
    """
    Build the PATCH body adding app_id to the policy's excluded applications.

    includeApplications is sent back unchanged; other exclusions are kept in order.
    """
    applications = _applications(policy)
    include = list(applications.get('includeApplications') or [])
    exclude = list(applications.get('excludeApplications') or [])
    if not excludes_application(policy, app_id):
        exclude.append(app_id)

    return {
        "conditions": {
            "applications": {
                "includeApplications": include,
                "excludeApplications": exclude,
            }
        }
    }


class ConditionalAccessExcluder:
    """Add an application exclusion to every eligible Conditional Access policy."""

    def __init__(self, graph, managed_patterns: Optional[Sequence[str]] = None):
        """
        Initialize the ConditionalAccessExcluder.

        Args:
            graph: GraphClient (or any object with get/get_all/patch)
            managed_patterns: Display name patterns of policies never touched
        """
        self.graph = graph
        self.managed_patterns = tuple(managed_patterns or DEFAULT_MANAGED_PATTERNS)

    def list_policies(self) -> List[Dict[str, Any]]:
        return self.graph.get_all(POLICIES_PATH)

    def exclude(self, app_id: str, policies: Optional[List[Dict[str, Any]]] = None,
                dry_run: bool = False) -> ExclusionReport:
        """
        Exclude app_id from all eligible policies.

        A failed update is recorded and the remaining policies are still processed.

        Args:
            app_id: Application (client) id of the Enterprise Application
            policies: Policies to process (fetched from the tenant when omitted)
            dry_run: Report the planned changes without updating anything

        Returns:
            ExclusionReport with one outcome per policy
        """
        if policies is None:
            policies = self.list_policies()

        report = ExclusionReport(app_id=app_id)
        logger.info("Checking %d Conditional Access policies for app %s", len(policies), app_id)

        for policy in policies:
            policy_id = policy.get('id', '')
            name = policy.get('displayName', policy_id)
            action = plan_action(policy, app_id, self.managed_patterns)

            if action == SKIPPED_MANAGED:
                logger.info("Skipping Microsoft-managed policy '%s'", name)
            elif action == SKIPPED_NOT_ALL:
                logger.debug("Policy '%s' does not target all applications", name)
            elif action == ALREADY_EXCLUDED:
                logger.info("Policy '%s' already excludes %s", name, app_id)
            elif dry_run:
                action = WOULD_UPDATE
                logger.info("Would exclude %s from policy '%s'", app_id, name)
            else:
                try:
                    action = self._update_policy(policy_id, name, app_id)
                except Exception as e:
                    logger.error("Failed to update policy '%s': %s", name, e)
                    report.outcomes.append(ExclusionOutcome(policy_id, name, FAILED, str(e)))
                    continue

            report.outcomes.append(ExclusionOutcome(policy_id, name, action))

        logger.info(
            "Conditional Access exclusion finished: %d updated, %d failed",
            len(report.updated), len(report.failed),
        )
        return report

    def _update_policy(self, policy_id: str, name: str, app_id: str) -> str:
        # Re-read so exclusions added since the listing are not overwritten
        current = self.graph.get(f"{POLICIES_PATH}/{policy_id}")
        if not targets_all_applications(current):
            return SKIPPED_NOT_ALL
        if excludes_application(current, app_id):
            logger.info("Policy '%s' already excludes %s", name, app_id)
            return ALREADY_EXCLUDED

        self.graph.patch(f"{POLICIES_PATH}/{policy_id}", build_exclusion_patch(current, app_id))
        logger.info("Excluded %s from policy '%s'", app_id, name)
        return UPDATED
