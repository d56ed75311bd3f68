import copy
import logging
from types import SimpleNamespace

import pytest

from avdeploy.exceptions import GraphApiError


STORAGE_APP_ID = "11111111-2222-3333-4444-555555555555"


def make_policy(policy_id, name, include=None, exclude=None):
    return {
        "id": policy_id,
        "displayName": name,
        "state": "enabled",
        "conditions": {
            "applications": {
                "includeApplications": list(include or []),
                "excludeApplications": list(exclude or []),
            }
        },
    }


class FakeGraph:
    """In-memory stand-in for GraphClient."""

    def __init__(self, policies=None, groups=None, service_principals=None):
        self.policies = {p["id"]: copy.deepcopy(p) for p in (policies or [])}
        self.groups = list(groups or [])
        self.service_principals = list(service_principals or [])
        self.fail_patch = set()
        self.patches = []
        self.posts = []
        self.get_all_calls = []

    def get(self, path, params=None, headers=None):
        policy_id = path.rsplit("/", 1)[-1]
        return copy.deepcopy(self.policies[policy_id])

    def get_all(self, path, params=None, headers=None):
        self.get_all_calls.append((path, params))
        params = params or {}
        if path.startswith("identity/conditionalAccess"):
            return [copy.deepcopy(p) for p in self.policies.values()]
        if path == "groups":
            items = self.groups
        elif path == "servicePrincipals":
            items = self.service_principals
        else:
            raise AssertionError(f"unexpected path {path}")

        flt = params.get("$filter")
        if flt:
            wanted = flt.split("eq '", 1)[1][:-1].replace("''", "'")
            items = [i for i in items if i.get("displayName") == wanted]
        return copy.deepcopy(items)

    def patch(self, path, body):
        policy_id = path.rsplit("/", 1)[-1]
        if policy_id in self.fail_patch:
            raise GraphApiError("Forbidden", status_code=403)
        self.patches.append((policy_id, copy.deepcopy(body)))
        self.policies[policy_id]["conditions"]["applications"].update(
            body["conditions"]["applications"]
        )
        return {}

    def post(self, path, body):
        created = dict(body, id=f"group-{len(self.groups) + 1}")
        self.posts.append((path, body))
        self.groups.append(created)
        return created


class FakeRoleAssignments:
    def __init__(self):
        self.assignments = []
        self.created = []

    def list_for_scope(self, scope, filter=None):
        principal = filter.split("'")[1] if filter else None
        return [a for a in self.assignments
                if principal is None or a.principal_id == principal]

    def create(self, scope, name, parameters):
        assignment = SimpleNamespace(
            id=f"{scope}/providers/Microsoft.Authorization/roleAssignments/{name}",
            name=name,
            scope=scope,
            principal_id=parameters.principal_id,
            role_definition_id=parameters.role_definition_id,
        )
        self.assignments.append(assignment)
        self.created.append(assignment)
        return assignment


class FakeRoleDefinitions:
    def __init__(self, roles):
        self.roles = roles
        self.calls = 0

    def list(self, scope, filter=None):
        self.calls += 1
        name = filter.split("'")[1]
        if name not in self.roles:
            return []
        return [SimpleNamespace(
            id=f"/subscriptions/sub/providers/Microsoft.Authorization/roleDefinitions/{self.roles[name]}",
            role_name=name,
        )]


class FakeAuthorizationClient:
    def __init__(self, roles=None):
        self.role_definitions = FakeRoleDefinitions(roles or {
            "Desktop Virtualization User": "1d18fff3-a72a-46b5-b4a9-0b38a3cd7e63",
            "Virtual Machine User Login": "fb879df8-f326-4884-b1cf-06f3ad86be52",
            "Virtual Machine Administrator Login": "1c0163c0-47e6-4577-8991-ea5c82e286e4",
            "Storage File Data SMB Share Contributor": "0c867c2a-1d8c-454a-a3db-ab2ea1bdc8bb",
            "Storage File Data SMB Share Elevated Contributor": "a7264617-510b-434b-a828-9731dc254ea7",
        })
        self.role_assignments = FakeRoleAssignments()


@pytest.fixture
def fake_authorization():
    return FakeAuthorizationClient()


@pytest.fixture
def base_config():
    return {
        "name": "avd-test",
        "subscription_id": "00000000-0000-0000-0000-000000000001",
        "location": "westeurope",
        "resource_group": "rg-avd-test",
        "network": {
            "vnet_name": "vnet-avd",
            "subnet_name": "snet-hosts",
            "private_endpoint_subnet": "snet-pe",
            "dns_servers": ["10.0.0.4"],
        },
        "storage": {
            "account_name": "stavdtest",
            "share_name": "profiles",
            "quota_gb": 200,
        },
        "host_pool": {
            "name": "hp-test",
            "max_sessions": 8,
        },
        "session_hosts": {
            "prefix": "avdt",
            "count": 2,
        },
        "tags": {"environment": "test"},
    }


@pytest.fixture(autouse=True)
def reset_package_logger():
    yield
    logger = logging.getLogger("avdeploy")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.propagate = True
