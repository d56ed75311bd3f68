import pytest

from avdeploy.exceptions import InvalidStorageAccountError
from avdeploy.storage_name import (
    StorageAccountName,
    is_valid_account_name,
    normalize_storage_account,
)


def test_bare_name():
    result = normalize_storage_account("mystorageaccount")
    assert result.name == "mystorageaccount"
    assert result.fqdn == "mystorageaccount.file.core.windows.net"


def test_fqdn_gives_same_result_as_bare_name():
    assert normalize_storage_account("mystorageaccount.file.core.windows.net") == \
        normalize_storage_account("mystorageaccount")


def test_surrounding_whitespace_and_case_are_normalized():
    result = normalize_storage_account("  MyStorageAccount.FILE.core.windows.net ")
    assert result == StorageAccountName("mystorageaccount", "mystorageaccount.file.core.windows.net")


@pytest.mark.parametrize("value", [
    "not a valid host",
    "mystorageaccount.blob.core.windows.net",
    "a.b.file.core.windows.net",
    "",
    None,
])
def test_unrecognized_input_is_rejected(value):
    with pytest.raises(InvalidStorageAccountError):
        normalize_storage_account(value)


def test_rejection_is_a_value_error():
    with pytest.raises(ValueError):
        normalize_storage_account("contoso.com")


def test_unc_path():
    account = normalize_storage_account("stavd")
    assert account.unc_path("profiles") == r"\\stavd.file.core.windows.net\profiles"


@pytest.mark.parametrize("name,expected", [
    ("stavdprofiles01", True),
    ("ab", False),
    ("a" * 25, False),
    ("st-avd", False),
])
def test_account_name_rule(name, expected):
    assert is_valid_account_name(name) is expected
