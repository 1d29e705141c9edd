"""
Roles and scopes recognised by the service.
"""

import enum


ADMIN_ROLE = "Administrator"
COPILOT_ROLE = "copilot"


class Scope(str, enum.Enum):
    """Machine-to-machine token scopes."""
    CREATE_BA = "create:billing-account"
    READ_BA = "read:billing-account"
    UPDATE_BA = "update:billing-account"
    ALL_BA = "all:billing-account"
    CREATE_CLIENT = "create:client"
    READ_CLIENT = "read:client"
    UPDATE_CLIENT = "update:client"
    ALL_CLIENT = "all:client"
