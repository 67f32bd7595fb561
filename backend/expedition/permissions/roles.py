# Overview: Default role templates created for every new organization.

DEFAULT_ROLE_PERMISSIONS = {
    "admin": [
        "sales_dispatch",
        "sales_view_all",
        "reports_view",
        "sales_report_view",
        "manage_policies",
    ],
    "financeiro": [
        "sales_view_all",
        "reports_view",
        "sales_report_view",
    ],
    "expedicao": [
        "sales_dispatch",
        "sales_view_all",
    ],
}

DEFAULT_ROLE_DESCRIPTIONS = {
    "admin": "Full access including approval policy management",
    "financeiro": "Financial team: cash verification and closing auxiliar sign-off",
    "expedicao": "Expedition team: dispatch and closing generation",
}
