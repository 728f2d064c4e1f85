"""awsacme - ACME client and challenge solvers for certificates on AWS."""

from awsacme.client import AcmeClient
from awsacme.config import Settings
from awsacme.services import (
    AuthorizeService,
    IssueService,
    ListService,
    RegisterService,
    select_due_for_renewal,
)
from awsacme.store import Store

__all__ = [
    "AcmeClient",
    "AuthorizeService",
    "IssueService",
    "ListService",
    "RegisterService",
    "Settings",
    "Store",
    "select_due_for_renewal",
]
__version__ = "0.1.0"
