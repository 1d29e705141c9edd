"""
Billing account enumerations.
"""

import enum


class AccountStatus(str, enum.Enum):
    """
    Lifecycle status shared by clients and billing accounts.
    
    Records are never deleted; they are deactivated instead.
    """
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


class SortOrder(str, enum.Enum):
    """Sort direction for list endpoints."""
    ASC = "asc"
    DESC = "desc"


class BillingAccountSortField(str, enum.Enum):
    """
    Sortable billing account fields.
    
    REMAINING_BUDGET is derived at read time; all others are stored columns.
    """
    ID = "id"
    NAME = "name"
    CREATED_AT = "createdAt"
    CREATED_BY = "createdBy"
    START_DATE = "startDate"
    END_DATE = "endDate"
    REMAINING_BUDGET = "remainingBudget"


class ClientSortField(str, enum.Enum):
    """Sortable client fields."""
    NAME = "name"
    START_DATE = "startDate"
    END_DATE = "endDate"
    STATUS = "status"
    CREATED_AT = "createdAt"
