"""
avdeploy - Azure Virtual Desktop provisioning and configuration

Deploys FSLogix storage, the AVD control plane and Entra-joined session hosts,
then configures Entra ID groups, RBAC role assignments and Conditional Access
exclusions for the storage account's Enterprise Application.
"""

__version__ = "1.0.0"
__license__ = "GPL-3.0"

from .config_loader import ConfigLoader
from .validator import ConfigValidator
from .orchestrator import Orchestrator
from .template_builder import InfraTemplateBuilder, SessionHostTemplateBuilder
from .conditional_access import ConditionalAccessExcluder
from .roles import RoleAssigner
from .groups import GroupManager
from .storage_name import normalize_storage_account

__all__ = [
    "ConfigLoader",
    "ConfigValidator",
    "Orchestrator",
    "InfraTemplateBuilder",
    "SessionHostTemplateBuilder",
    "ConditionalAccessExcluder",
    "RoleAssigner",
    "GroupManager",
    "normalize_storage_account",
]
