"""
Azure CLI Module

Runs Azure CLI commands as subprocesses.
"""

import json
import logging
import os
import shutil
import subprocess
from typing import Any, Dict, List, Optional

from .exceptions import AzureCliError

logger = logging.getLogger(__name__)

INSTALL_URL = "https://learn.microsoft.com/cli/azure/install-azure-cli"


class AzureCli:
    """Invoke 'az' and parse its JSON output."""

    def __init__(self, timeout: int = 1800):
        """
        Initialize the AzureCli wrapper.

        Args:
            timeout: Seconds before a command is abandoned
        """
        self.timeout = timeout
        # On Windows the CLI ships as az.cmd
        self.executable = 'az.cmd' if os.name == 'nt' else 'az'

    def is_installed(self) -> bool:
        """Check if the Azure CLI is installed and responds."""
        if shutil.which(self.executable) is None:
            return False
        try:
            result = subprocess.run(
                [self.executable, '--version'],
                capture_output=True,
                text=True,
                timeout=30,
                shell=(os.name == 'nt'),
            )
        except (subprocess.TimeoutExpired, FileNotFoundError):
            return False
        return result.returncode == 0

    def run(self, args: List[str], capture_output: bool = True,
            check: bool = True) -> subprocess.CompletedProcess:
        """
        Run an Azure CLI command.

        Args:
            args: Command arguments without the leading 'az'
            capture_output: Capture stdout/stderr instead of streaming them
            check: Raise AzureCliError on a non-zero exit code

        Returns:
            CompletedProcess instance
        """
        cmd = [self.executable] + args
        logger.debug("Running: az %s", " ".join(args))
        try:
            result = subprocess.run(
                cmd,
                capture_output=capture_output,
                text=True,
                timeout=self.timeout,
                shell=(os.name == 'nt'),
            )
        except FileNotFoundError:
            raise AzureCliError(f"Azure CLI not found. Install from: {INSTALL_URL}")
        except subprocess.TimeoutExpired:
            raise AzureCliError(f"'az {' '.join(args[:3])}' timed out after {self.timeout}s")

        if check and result.returncode != 0:
            stderr = (result.stderr or '').strip()
            raise AzureCliError(
                f"'az {' '.join(args[:3])}' failed with exit code {result.returncode}: {stderr}",
                returncode=result.returncode,
                stderr=stderr,
            )
        return result

    def run_json(self, args: List[str]) -> Any:
        """Run a command with '--output json' and decode the result."""
        result = self.run(args + ['--output', 'json'])
        output = (result.stdout or '').strip()
        return json.loads(output) if output else None

    def current_account(self) -> Optional[Dict[str, Any]]:
        """The signed-in account, or None when not logged in."""
        result = self.run(['account', 'show', '--output', 'json'], check=False)
        if result.returncode != 0:
            return None
        return json.loads(result.stdout)

    def login(self, tenant_id: Optional[str] = None):
        args = ['login']
        if tenant_id:
            args += ['--tenant', tenant_id]
        self.run(args, capture_output=False)

    def ensure_login(self, tenant_id: Optional[str] = None) -> Dict[str, Any]:
        """Reuse the existing CLI session, logging in when there is none."""
        account = self.current_account()
        if account and (not tenant_id or account.get('tenantId') == tenant_id):
            logger.info("Azure CLI already logged in as %s", account.get('user', {}).get('name'))
            return account

        logger.info("Logging in to Azure CLI...")
        self.login(tenant_id)
        account = self.current_account()
        if account is None:
            raise AzureCliError("Azure CLI login did not complete")
        return account

    def list_subscriptions(self) -> List[Dict[str, Any]]:
        return self.run_json(['account', 'list', '--all']) or []

    def set_subscription(self, subscription_id: str):
        logger.info("Setting subscription: %s", subscription_id)
        self.run(['account', 'set', '--subscription', subscription_id])
