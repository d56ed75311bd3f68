"""
Configuration Loader Module

Handles loading and parsing YAML configuration files for AVD deployments.
"""

from pathlib import Path
from typing import Dict, Any, List, Optional
import yaml

from .exceptions import ConfigurationError
from .storage_name import StorageAccountName, normalize_storage_account

DEFAULT_GROUPS = {
    "users": {"name": "AVD-Users", "description": "Azure Virtual Desktop users"},
    "admins": {"name": "AVD-Admins", "description": "Azure Virtual Desktop administrators"},
    "devices": {"name": "AVD-Devices", "description": "Azure Virtual Desktop session hosts"},
}


class ConfigLoader:
    """Load and parse YAML configuration files."""

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize the ConfigLoader.

        Args:
            config_path: Path to the YAML configuration file
        """
        self.config_path = config_path
        self.config: Dict[str, Any] = {}

    @classmethod
    def from_dict(cls, config: Dict[str, Any]) -> "ConfigLoader":
        """Wrap an already parsed configuration."""
        loader = cls()
        loader.config = config
        return loader

    def load(self, config_path: Optional[str] = None) -> Dict[str, Any]:
        """
        Load configuration from YAML file.

        Args:
            config_path: Path to the YAML configuration file

        Returns:
            Dictionary containing the parsed configuration

        Raises:
            FileNotFoundError: If the configuration file doesn't exist
            ConfigurationError: If the YAML is malformed
        """
        path = config_path or self.config_path

        if not path:
            raise ValueError("No configuration path provided")

        config_file = Path(path)

        if not config_file.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")

        try:
            with open(config_file, 'r', encoding='utf-8') as f:
                self.config = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Error parsing YAML configuration: {e}")

        if not isinstance(self.config, dict):
            raise ConfigurationError(f"Configuration root must be a mapping: {path}")

        return self.config

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get a configuration value by key.

        Args:
            key: Configuration key (supports dot notation, e.g., 'storage.share_name')
            default: Default value if key doesn't exist

        Returns:
            Configuration value or default
        """
        keys = key.split('.')
        value = self.config

        for k in keys:
            if isinstance(value, dict):
                value = value.get(k)
                if value is None:
                    return default
            else:
                return default

        return value

    def set(self, key: str, value: Any):
        """Set a value using dot notation, creating sections as needed."""
        keys = key.split('.')
        section = self.config
        for k in keys[:-1]:
            section = section.setdefault(k, {})
        section[keys[-1]] = value

    def get_network_config(self) -> Dict[str, Any]:
        """Get network configuration section."""
        return self.config.get('network', {})

    def get_storage_config(self) -> Dict[str, Any]:
        """Get storage configuration section."""
        return self.config.get('storage', {})

    def get_host_pool_config(self) -> Dict[str, Any]:
        """Get host pool configuration section."""
        return self.config.get('host_pool', {})

    def get_session_hosts_config(self) -> Dict[str, Any]:
        """Get session hosts configuration section."""
        return self.config.get('session_hosts', {})

    def get_groups_config(self) -> Dict[str, Dict[str, str]]:
        """
        Get Entra ID groups, filling unspecified keys with defaults.

        Returns:
            Group key ('users', 'admins', 'devices') to name/description
        """
        groups = {key: dict(value) for key, value in DEFAULT_GROUPS.items()}
        for key, value in (self.config.get('groups') or {}).items():
            if isinstance(value, str):
                value = {"name": value}
            groups.setdefault(key, {}).update(value)
        return groups

    def get_role_assignments(self) -> Optional[List[Dict[str, str]]]:
        """Explicit role plan, or None to use the default AVD plan."""
        return self.config.get('role_assignments')

    def get_conditional_access_config(self) -> Dict[str, Any]:
        """Get Conditional Access configuration section."""
        return self.config.get('conditional_access', {})

    def get_tags(self) -> Dict[str, str]:
        """Get tags configuration section."""
        return self.config.get('tags', {})

    def get_storage_account(self) -> Optional[StorageAccountName]:
        """Normalized storage account name, or None when not configured."""
        account = self.get('storage.account_name')
        if not account:
            return None
        return normalize_storage_account(account)

    def get_application_group_name(self) -> str:
        """Desktop application group name, derived from the host pool when unset."""
        host_pool = self.get_host_pool_config()
        return host_pool.get('application_group') or f"{host_pool.get('name', 'hp-avd')}-DAG"

    def get_workspace_name(self) -> str:
        host_pool = self.get_host_pool_config()
        return host_pool.get('workspace') or f"{host_pool.get('name', 'hp-avd')}-ws"
