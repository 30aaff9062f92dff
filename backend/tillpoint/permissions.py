# Overview: The single access policy: (role, action, resource) -> allow/deny.

"""
Every route that reads or mutates business data asks this module, and
only this module, whether the caller may proceed. Adding a role or an
action means editing the tables below; nothing else hard-codes roles.
"""

from __future__ import annotations

from dataclasses import dataclass

ADMIN = "ADMIN"
MANAGER = "MANAGER"
CASHIER = "CASHIER"
ROLES = (ADMIN, MANAGER, CASHIER)

# Each action is defined as: (code, name, description, category)
ACTION_DEFINITIONS = [
    ("CREATE_SALE", "Create Sale", "Ring up a sale and validate carts", "SALES"),
    ("VIEW_SALES", "View Sales", "List sales, view receipts and refunds", "SALES"),
    ("REFUND_SALE", "Refund Sale", "Refund items of a completed sale", "SALES"),
    ("VIEW_CATALOG", "View Catalog", "List products, variants and categories", "CATALOG"),
    ("MANAGE_PRODUCTS", "Manage Products", "Create and deactivate products, variants and categories", "CATALOG"),
    ("VIEW_INVENTORY", "View Inventory", "View the stock adjustment ledger", "INVENTORY"),
    ("ADJUST_INVENTORY", "Adjust Inventory", "Record a manual stock adjustment", "INVENTORY"),
    ("BULK_ADJUST_INVENTORY", "Bulk Adjust Inventory", "Apply many stock adjustments at once", "INVENTORY"),
    ("VIEW_CUSTOMERS", "View Customers", "Look up customers and their rewards", "CUSTOMERS"),
    ("CREATE_CUSTOMER", "Create Customer", "Register a new customer at the till", "CUSTOMERS"),
    ("REDEEM_REWARD", "Redeem Reward", "Redeem a customer's loyalty reward at the till", "CUSTOMERS"),
    ("MANAGE_CUSTOMERS", "Manage Customers", "Deactivate customers and issue loyalty rewards", "CUSTOMERS"),
    ("VIEW_REPORTS", "View Reports", "Sales, inventory and customer reports", "REPORTS"),
    ("MANAGE_USERS", "Manage Users", "Create and deactivate staff accounts", "USERS"),
]

ACTIONS = frozenset(code for code, _, _, _ in ACTION_DEFINITIONS)

_CASHIER_ACTIONS = {
    "CREATE_SALE",
    "VIEW_SALES",
    "VIEW_CATALOG",
    "VIEW_CUSTOMERS",
    "CREATE_CUSTOMER",
    "REDEEM_REWARD",
}

_MANAGER_ACTIONS = _CASHIER_ACTIONS | {
    "REFUND_SALE",
    "MANAGE_PRODUCTS",
    "VIEW_INVENTORY",
    "ADJUST_INVENTORY",
    "BULK_ADJUST_INVENTORY",
    "MANAGE_CUSTOMERS",
    "VIEW_REPORTS",
}

ROLE_POLICIES: dict[str, frozenset[str]] = {
    ADMIN: frozenset(ACTIONS),
    MANAGER: frozenset(_MANAGER_ACTIONS),
    CASHIER: frozenset(_CASHIER_ACTIONS),
}


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: str


def evaluate(role: str | None, action: str, resource: str | None = None) -> Decision:
    """
    Decide whether `role` may perform `action` on `resource`.

    `resource` is informational today (the request path); decisions are
    role/action based. Unknown roles and unknown actions are denied.
    """
    if action not in ACTIONS:
        return Decision(False, f"Unknown action: {action}")
    if role not in ROLE_POLICIES:
        return Decision(False, f"Unknown role: {role}")
    if action in ROLE_POLICIES[role]:
        return Decision(True, "allowed")
    target = f" on {resource}" if resource else ""
    return Decision(False, f"Role {role} may not {action}{target}")


def is_allowed(role: str | None, action: str, resource: str | None = None) -> bool:
    return evaluate(role, action, resource).allowed


def actions_for(role: str) -> list[str]:
    return sorted(ROLE_POLICIES.get(role, ()))
