from .locations import Location
from .auth import User, SessionToken
from .requests import InventoryRequest, CountItem, AssignmentRule, DocumentSequence
from .audits import AuditDocument, AuditSample
from .approvals import DivisionApprover, AdjustmentApproval
from .history import InventoryHistory

__all__ = [
    'Location',
    'User', 'SessionToken',
    'InventoryRequest', 'CountItem', 'AssignmentRule', 'DocumentSequence',
    'AuditDocument', 'AuditSample',
    'DivisionApprover', 'AdjustmentApproval',
    'InventoryHistory',
]
