"""
Session Host Preparation Module

Builds the Windows commands that configure FSLogix and Kerberos on session
hosts, plus the share permission and DNS commands the operator runs by hand.
"""

from typing import List, Optional

FSLOGIX_PROFILES_KEY = r"HKLM\SOFTWARE\FSLogix\Profiles"
KERBEROS_PARAMETERS_KEY = r"HKLM\SYSTEM\CurrentControlSet\Control\Lsa\Kerberos\Parameters"
AZURE_AD_ACCOUNT_KEY = r"HKLM\Software\Policies\Microsoft\AzureADAccount"


def _reg_add(key: str, value: str, value_type: str, data) -> str:
    return f'reg add "{key}" /v {value} /t {value_type} /d "{data}" /f'


def fslogix_registry_commands(vhd_location: str, delete_local_profile: bool = True,
                              size_in_mbs: Optional[int] = None) -> List[str]:
    """
    Registry settings enabling FSLogix profile containers on the share.

    Args:
        vhd_location: UNC path of the profile share
        delete_local_profile: Remove a local profile when a container applies
        size_in_mbs: Optional container size cap
    """
    commands = [
        _reg_add(FSLOGIX_PROFILES_KEY, "Enabled", "REG_DWORD", 1),
        _reg_add(FSLOGIX_PROFILES_KEY, "VHDLocations", "REG_MULTI_SZ", vhd_location),
        _reg_add(FSLOGIX_PROFILES_KEY, "DeleteLocalProfileWhenVHDShouldApply", "REG_DWORD",
                 1 if delete_local_profile else 0),
        _reg_add(FSLOGIX_PROFILES_KEY, "FlipFlopProfileDirectoryName", "REG_DWORD", 1),
        _reg_add(FSLOGIX_PROFILES_KEY, "VolumeType", "REG_SZ", "VHDX"),
    ]
    if size_in_mbs:
        commands.append(_reg_add(FSLOGIX_PROFILES_KEY, "SizeInMBs", "REG_DWORD", size_in_mbs))
    return commands


def kerberos_registry_commands() -> List[str]:
    """Let Entra-joined hosts fetch Kerberos tickets from Entra ID."""
    return [
        _reg_add(KERBEROS_PARAMETERS_KEY, "CloudKerberosTicketRetrievalEnabled", "REG_DWORD", 1),
        _reg_add(AZURE_AD_ACCOUNT_KEY, "LoadCredKeyFromProfile", "REG_DWORD", 1),
    ]


def build_prep_command(vhd_location: str, size_in_mbs: Optional[int] = None) -> str:
    """Single command line for the CustomScriptExtension on each session host."""
    commands = fslogix_registry_commands(vhd_location, size_in_mbs=size_in_mbs)
    commands.extend(kerberos_registry_commands())
    return "cmd.exe /c " + " && ".join(commands)


def icacls_commands(drive: str, users_group: str, admins_group: str) -> List[str]:
    """
    NTFS permissions for an FSLogix profile share mounted at drive.

    Users may create their own folder only; admins and creator-owner keep full control.
    """
    root = f"{drive.rstrip(':')}:\\"
    return [
        f'icacls {root} /inheritance:r',
        f'icacls {root} /grant "{admins_group}":(OI)(CI)(F)',
        f'icacls {root} /grant "Creator Owner":(OI)(CI)(IO)(M)',
        f'icacls {root} /grant "{users_group}":(M)',
        f'icacls {root} /remove "Authenticated Users"',
        f'icacls {root} /remove "Builtin\\Users"',
    ]


def dns_record_command(zone: str, name: str, ip_address: str,
                       dns_server: Optional[str] = None) -> str:
    """Add-DnsServerResourceRecordA line pointing the storage FQDN at its private endpoint."""
    command = (
        f'Add-DnsServerResourceRecordA -ZoneName "{zone}" -Name "{name}" '
        f'-IPv4Address "{ip_address}" -CreatePtr:$false'
    )
    if dns_server:
        command += f' -ComputerName "{dns_server}"'
    return command
