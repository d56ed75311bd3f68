"""
Storage Account Name Module

Normalizes storage account input given either as a bare account name or as the
Azure Files endpoint FQDN.
"""

import re
from dataclasses import dataclass

from .exceptions import InvalidStorageAccountError

FILE_ENDPOINT_SUFFIX = "file.core.windows.net"

_FQDN_PATTERN = re.compile(r'^([^.\s]+)\.file\.core\.windows\.net$', re.IGNORECASE)
_BARE_NAME_PATTERN = re.compile(r'^[^.\s]+$')
_ACCOUNT_NAME_PATTERN = re.compile(r'^[a-z0-9]{3,24}$')


@dataclass(frozen=True)
class StorageAccountName:
    """Both forms of a storage account identifier."""

    name: str
    fqdn: str

    def unc_path(self, share_name: str) -> str:
        """UNC path of a file share on this account."""
        return f"\\\\{self.fqdn}\\{share_name}"

    def __str__(self) -> str:
        return self.name


def normalize_storage_account(value: str) -> StorageAccountName:
    """
    Accept a storage account name or FQDN and return both forms.

    Args:
        value: 'mystorageaccount' or 'mystorageaccount.file.core.windows.net'

    Returns:
        StorageAccountName with the bare name and the file endpoint FQDN

    Raises:
        InvalidStorageAccountError: If the input is neither form
    """
    candidate = (value or '').strip()

    match = _FQDN_PATTERN.match(candidate)
    if match:
        name = match.group(1)
    elif _BARE_NAME_PATTERN.match(candidate):
        name = candidate
    else:
        raise InvalidStorageAccountError(
            f"Unrecognized storage account input: '{value}'. "
            f"Expected a storage account name or <name>.{FILE_ENDPOINT_SUFFIX}"
        )

    # Account names are lowercase in Azure; CLI input is often not
    name = name.lower()
    return StorageAccountName(name=name, fqdn=f"{name}.{FILE_ENDPOINT_SUFFIX}")


def is_valid_account_name(name: str) -> bool:
    """Check Azure's naming rule: 3-24 characters, lowercase letters and digits."""
    return bool(_ACCOUNT_NAME_PATTERN.match(name or ''))
