"""
Configuration Validator Module

Validates YAML configuration against the schema and performs semantic validation.
"""

import ipaddress
import re
from pathlib import Path
from typing import Dict, Any, List, Tuple
import yaml
from jsonschema import validate, ValidationError

from .config_loader import ConfigLoader
from .exceptions import InvalidStorageAccountError
from .roles import SCOPE_KEYS
from .storage_name import normalize_storage_account, is_valid_account_name

SCHEMA_PATH = Path(__file__).parent / "schemas" / "avd-config.schema.yaml"

GUID_PATTERN = re.compile(
    r'^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$'
)

# Windows computer names are limited to 15 characters
MAX_COMPUTER_NAME = 15


def is_guid(value: str) -> bool:
    return bool(GUID_PATTERN.match(value or ''))


class ConfigValidator:
    """Validate configuration files against schema and business rules."""

    def __init__(self, schema_path: str = None):
        """
        Initialize the ConfigValidator.

        Args:
            schema_path: Path to the schema file (defaults to the packaged schema)
        """
        self.schema_path = Path(schema_path) if schema_path else SCHEMA_PATH
        self.schema = self._load_schema()
        self.errors: List[str] = []
        self.warnings: List[str] = []

    def _load_schema(self) -> Dict[str, Any]:
        """Load the JSON schema from file."""
        if not self.schema_path.exists():
            raise FileNotFoundError(f"Schema file not found: {self.schema_path}")

        with open(self.schema_path, 'r', encoding='utf-8') as f:
            return yaml.safe_load(f)

    def validate(self, config: Dict[str, Any]) -> Tuple[bool, List[str], List[str]]:
        """
        Validate configuration against schema and business rules.

        Args:
            config: Configuration dictionary to validate

        Returns:
            Tuple of (is_valid, errors, warnings)
        """
        self.errors = []
        self.warnings = []

        # Schema validation
        try:
            validate(instance=config, schema=self.schema)
        except ValidationError as e:
            location = "/".join(str(p) for p in e.absolute_path)
            prefix = f"{location}: " if location else ""
            self.errors.append(f"Schema validation error: {prefix}{e.message}")
            return False, self.errors, self.warnings

        # Semantic validation
        self._validate_identifiers(config)
        self._validate_storage(config)
        self._validate_network(config)
        self._validate_host_pool(config)
        self._validate_session_hosts(config)
        self._validate_role_assignments(config)

        is_valid = len(self.errors) == 0
        return is_valid, self.errors, self.warnings

    def _validate_identifiers(self, config: Dict[str, Any]):
        """Validate subscription and tenant ids."""
        for key in ('subscription_id', 'tenant_id'):
            value = config.get(key)
            if value and not is_guid(value):
                self.errors.append(f"{key} '{value}' is not a GUID")

        if not config.get('subscription_id'):
            self.warnings.append("subscription_id not set; it will be chosen interactively")

    def _validate_storage(self, config: Dict[str, Any]):
        """Validate storage account settings."""
        storage = config.get('storage', {})
        account = storage.get('account_name')

        if not account:
            self.warnings.append("storage.account_name not set; it will be prompted for")
        else:
            try:
                normalized = normalize_storage_account(account)
            except InvalidStorageAccountError as e:
                self.errors.append(str(e))
            else:
                if not is_valid_account_name(normalized.name):
                    self.errors.append(
                        f"Storage account name '{normalized.name}' must be 3-24 "
                        f"lowercase letters and digits"
                    )

        kerberos = storage.get('kerberos', {})
        domain_guid = kerberos.get('domain_guid')
        if domain_guid and not is_guid(domain_guid):
            self.errors.append(f"storage.kerberos.domain_guid '{domain_guid}' is not a GUID")
        if bool(domain_guid) != bool(kerberos.get('domain_name')):
            self.errors.append("storage.kerberos needs both domain_name and domain_guid")

        sku = storage.get('sku', 'Premium_LRS')
        quota = storage.get('quota_gb')
        if sku.startswith('Standard') and quota and quota > 5120:
            self.warnings.append(
                f"Quota {quota} GB on {sku} requires large file shares to be enabled"
            )

    def _validate_network(self, config: Dict[str, Any]):
        """Validate network configuration."""
        network = config.get('network', {})
        storage = config.get('storage', {})

        if storage.get('private_endpoint', True) and storage.get('account_name'):
            if not network.get('vnet_name'):
                self.errors.append("Private endpoint requested but network.vnet_name is not set")
            if not (network.get('private_endpoint_subnet') or network.get('subnet_name')):
                self.errors.append("Private endpoint requested but no subnet is configured")

        for server in network.get('dns_servers', []):
            try:
                ipaddress.IPv4Address(server)
            except ValueError:
                self.errors.append(f"DNS server '{server}' is not an IPv4 address")

    def _validate_host_pool(self, config: Dict[str, Any]):
        """Validate host pool settings."""
        host_pool = config.get('host_pool', {})
        pool_type = host_pool.get('type', 'Pooled')
        load_balancer = host_pool.get('load_balancer')

        max_sessions = host_pool.get('max_sessions')
        if max_sessions is not None and max_sessions < 1:
            self.errors.append("host_pool.max_sessions must be at least 1")

        if pool_type == 'Personal' and load_balancer and load_balancer != 'Persistent':
            self.errors.append("Personal host pools must use the 'Persistent' load balancer")
        if pool_type == 'Pooled' and load_balancer == 'Persistent':
            self.errors.append("Pooled host pools cannot use the 'Persistent' load balancer")

    def _validate_session_hosts(self, config: Dict[str, Any]):
        """Validate session host naming."""
        hosts = config.get('session_hosts', {})
        if not hosts:
            return

        prefix = hosts.get('prefix', 'avd')
        count = hosts.get('count', 1)
        last_index = hosts.get('start_index', 0) + count - 1
        longest = f"{prefix}-{last_index}"
        if len(longest) > MAX_COMPUTER_NAME:
            self.errors.append(
                f"Session host name '{longest}' exceeds {MAX_COMPUTER_NAME} character limit"
            )
        if not re.match(r'^[A-Za-z][A-Za-z0-9-]*$', prefix):
            self.errors.append(f"Session host prefix '{prefix}' must start with a letter")

    def _validate_role_assignments(self, config: Dict[str, Any]):
        """Validate that role assignments reference known groups and scopes."""
        assignments = config.get('role_assignments')
        if assignments is None:
            return

        groups = ConfigLoader.from_dict(config).get_groups_config()
        for entry in assignments:
            if entry['group'] not in groups:
                self.errors.append(
                    f"Role '{entry['role']}' references unknown group '{entry['group']}'"
                )
            if entry['scope'] not in SCOPE_KEYS:
                self.errors.append(
                    f"Role '{entry['role']}' has unknown scope '{entry['scope']}'. "
                    f"Valid scopes: {', '.join(SCOPE_KEYS)}"
                )
