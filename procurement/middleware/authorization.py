from fastapi import Depends, HTTPException, status

from procurement.middleware.auth import get_current_user

ROLES = (
    "admin",
    "finance_head",
    "finance",
    "procurement_lead",
    "procurement",
    "manager",
    "vendor",
)

BUDGET_ADMINS = ("admin", "finance_head")
FINANCE_ROLES = ("admin", "finance_head", "finance")
PURCHASING_ROLES = ("admin", "finance_head", "procurement_lead", "procurement", "manager")
APPROVER_ROLES = ("admin", "finance_head", "procurement_lead")
CONTRACT_ROLES = ("admin", "procurement_lead", "procurement")
CONTRACT_APPROVERS = ("admin", "procurement_lead")
INTERNAL_ROLES = tuple(r for r in ROLES if r != "vendor")


def require_roles(*allowed_roles: str):
    """
    FastAPI dependency factory for role-based access control.

    Usage:
        @router.post("/budgets")
        async def create_budget(
            current_user: dict = Depends(get_current_user),
            _auth: None = Depends(require_roles("admin", "finance_head")),
        ):
    """
    async def check_role(current_user: dict = Depends(get_current_user)):
        if current_user["role"] not in allowed_roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={
                    "error": {
                        "code": "INSUFFICIENT_PERMISSIONS",
                        "message": (
                            f"Role '{current_user['role']}' cannot perform this action. "
                            f"Required: {allowed_roles}"
                        ),
                    }
                },
            )
        return None

    return check_role


def check_department_scope(current_user: dict, entity_department_id: str):
    """For 'manager' role: verify entity belongs to their department."""
    if current_user["role"] == "manager":
        if str(current_user.get("department_id")) != str(entity_department_id):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={
                    "error": {
                        "code": "INSUFFICIENT_PERMISSIONS",
                        "message": "You can only access entities within your department",
                    }
                },
            )
