"""
Permission System Constants and Definitions

WHY: Centralized permission definitions ensure consistency across the application.
All permission codes and role mappings defined here.

DESIGN PRINCIPLES:
- Permissions are granular (one action per permission)
- Categories group related permissions for UI display
- Services still enforce role, ownership and location scope on top of these
- Admin has all permissions by default
"""

# =============================================================================
# ROLES
# =============================================================================

ROLE_ADMIN = "admin"
ROLE_MANAGER = "manager"
ROLE_COORDINATOR = "inventory_coordinator"
ROLE_AUDITOR = "inventory_auditor"
ROLE_APPROVER = "adjustment_approver"
ROLE_USER = "user"

ALL_ROLES = (
    ROLE_ADMIN,
    ROLE_MANAGER,
    ROLE_COORDINATOR,
    ROLE_AUDITOR,
    ROLE_APPROVER,
    ROLE_USER,
)


# =============================================================================
# PERMISSION CATEGORIES
# =============================================================================

class PermissionCategory:
    """Permission categories for organization."""
    REQUESTS = "REQUESTS"
    COUNTING = "COUNTING"
    AUDIT = "AUDIT"
    ADJUSTMENTS = "ADJUSTMENTS"
    REPORTS = "REPORTS"


# =============================================================================
# PERMISSION DEFINITIONS
# =============================================================================

# Each permission is defined as: (code, name, description, category)
PERMISSION_DEFINITIONS = [
    # REQUEST PERMISSIONS
    (
        "CREATE_INVENTORY_REQUESTS",
        "Create Inventory Requests",
        "Create counting campaigns from a catalog filter",
        PermissionCategory.REQUESTS
    ),
    (
        "VIEW_INVENTORY_REQUESTS",
        "View Inventory Requests",
        "List requests and view their count items",
        PermissionCategory.REQUESTS
    ),
    (
        "SEND_INVENTORY_REQUESTS",
        "Send Inventory Requests",
        "Send DRAFT requests to the target locations",
        PermissionCategory.REQUESTS
    ),
    (
        "CANCEL_INVENTORY_REQUESTS",
        "Cancel Inventory Requests",
        "Cancel requests before counting starts",
        PermissionCategory.REQUESTS
    ),

    # COUNTING PERMISSIONS
    (
        "ASSIGN_COUNT_ITEMS",
        "Assign Count Items",
        "Distribute pending items to counters at own location",
        PermissionCategory.COUNTING
    ),
    (
        "CONFIGURE_ASSIGNMENT_RULES",
        "Configure Assignment Rules",
        "Configure automatic assignment by division/category/group",
        PermissionCategory.COUNTING
    ),
    (
        "RECORD_COUNTS",
        "Record Counts",
        "Record physical counts on assigned items and submit them",
        PermissionCategory.COUNTING
    ),
    (
        "REVIEW_COUNTS",
        "Review Counts",
        "Approve or reject submitted counts at own location",
        PermissionCategory.COUNTING
    ),
    (
        "COMMENT_COUNT_ITEMS",
        "Comment Count Items",
        "Add role comments to count items",
        PermissionCategory.COUNTING
    ),

    # AUDIT PERMISSIONS
    (
        "AUDIT_COUNTS",
        "Audit Counts",
        "Create audit documents and record recount results",
        PermissionCategory.AUDIT
    ),
    (
        "DECIDE_AUDIT_DOCUMENTS",
        "Decide Audit Documents",
        "Approve or reject completed audit documents",
        PermissionCategory.AUDIT
    ),

    # ADJUSTMENT PERMISSIONS
    (
        "COORDINATE_ADJUSTMENTS",
        "Coordinate Adjustments",
        "Send reconciled items for approval and execute approved adjustments",
        PermissionCategory.ADJUSTMENTS
    ),
    (
        "APPROVE_ADJUSTMENTS",
        "Approve Adjustments",
        "Decide division adjustment approvals",
        PermissionCategory.ADJUSTMENTS
    ),
    (
        "CONFIGURE_DIVISION_APPROVERS",
        "Configure Division Approvers",
        "Maintain the approver set for each division",
        PermissionCategory.ADJUSTMENTS
    ),

    # REPORTS
    (
        "VIEW_INVENTORY_REPORTS",
        "View Inventory Reports",
        "Access count summaries by status, division and location",
        PermissionCategory.REPORTS
    ),
]

ALL_PERMISSION_CODES = [code for code, _name, _description, _category in PERMISSION_DEFINITIONS]


# =============================================================================
# DEFAULT ROLE MAPPINGS
# =============================================================================

DEFAULT_ROLE_PERMISSIONS = {
    # Admin gets ALL permissions
    ROLE_ADMIN: list(ALL_PERMISSION_CODES),

    ROLE_MANAGER: [
        "CREATE_INVENTORY_REQUESTS",
        "VIEW_INVENTORY_REQUESTS",
        "SEND_INVENTORY_REQUESTS",
        "ASSIGN_COUNT_ITEMS",
        "CONFIGURE_ASSIGNMENT_RULES",
        "RECORD_COUNTS",
        "REVIEW_COUNTS",
        "COMMENT_COUNT_ITEMS",
        "VIEW_INVENTORY_REPORTS",
    ],

    ROLE_COORDINATOR: [
        "CREATE_INVENTORY_REQUESTS",
        "VIEW_INVENTORY_REQUESTS",
        "SEND_INVENTORY_REQUESTS",
        "CANCEL_INVENTORY_REQUESTS",
        "RECORD_COUNTS",
        "COMMENT_COUNT_ITEMS",
        "DECIDE_AUDIT_DOCUMENTS",
        "COORDINATE_ADJUSTMENTS",
        "CONFIGURE_DIVISION_APPROVERS",
        "VIEW_INVENTORY_REPORTS",
    ],

    ROLE_AUDITOR: [
        "VIEW_INVENTORY_REQUESTS",
        "RECORD_COUNTS",
        "COMMENT_COUNT_ITEMS",
        "AUDIT_COUNTS",
        "DECIDE_AUDIT_DOCUMENTS",
        "VIEW_INVENTORY_REPORTS",
    ],

    ROLE_APPROVER: [
        "VIEW_INVENTORY_REQUESTS",
        "APPROVE_ADJUSTMENTS",
    ],

    # Counters: only their own work pool
    ROLE_USER: [
        "VIEW_INVENTORY_REQUESTS",
        "RECORD_COUNTS",
        "COMMENT_COUNT_ITEMS",
    ],
}
