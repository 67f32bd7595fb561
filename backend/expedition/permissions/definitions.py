# Overview: All permission definitions organized by category.
# Each permission is defined as: (code, name, description, category)

from .categories import PermissionCategory


# -- SALES --

SALES_PERMISSIONS = [
    (
        "sales_dispatch",
        "Dispatch Sales",
        "Dispatch sales and generate delivery closings",
        PermissionCategory.SALES,
    ),
    (
        "sales_view_all",
        "View All Sales",
        "View sales from every seller and channel",
        PermissionCategory.SALES,
    ),
]


# -- REPORTS --

REPORT_PERMISSIONS = [
    (
        "reports_view",
        "View Reports (Financeiro)",
        "View financial reports; signs the auxiliar stage of closings",
        PermissionCategory.REPORTS,
    ),
    (
        "sales_report_view",
        "View Sales Report",
        "View detailed sales report and closing members",
        PermissionCategory.REPORTS,
    ),
]


# -- SYSTEM --

SYSTEM_PERMISSIONS = [
    (
        "manage_policies",
        "Manage Approval Policies",
        "Grant and revoke confirmation allowlist entries",
        PermissionCategory.SYSTEM,
    ),
]


PERMISSION_DEFINITIONS = (
    SALES_PERMISSIONS
    + REPORT_PERMISSIONS
    + SYSTEM_PERMISSIONS
)
