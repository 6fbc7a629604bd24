"""
Typed entity adapters over the generic adapter contract.
"""

from .audit_log import AuditLogAdapter
from .base import EntityAdapter
from .consent import ConsentAdapter
from .domain import DomainAdapter
from .geo_location import GeoLocationAdapter
from .policy import PolicyAdapter
from .purpose import PurposeAdapter
from .purpose_junction import PurposeJunctionAdapter
from .record import ConsentRecordAdapter, RecordType
from .user import UserAdapter
from .withdrawal import WithdrawalAdapter

__all__ = [
    "AuditLogAdapter",
    "ConsentAdapter",
    "ConsentRecordAdapter",
    "DomainAdapter",
    "EntityAdapter",
    "GeoLocationAdapter",
    "PolicyAdapter",
    "PurposeAdapter",
    "PurposeJunctionAdapter",
    "RecordType",
    "UserAdapter",
    "WithdrawalAdapter",
]
