# Overview: Permission category constants for grouping related permissions.


class PermissionCategory:
    """Permission categories for organization and UI display."""
    SALES = "SALES"
    REPORTS = "REPORTS"
    SYSTEM = "SYSTEM"
