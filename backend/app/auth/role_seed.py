"""System role templates seeded into the Role Store at deployment.

These are data: `app.services.roles.seed_system_roles()` writes them as
ordinary Role rows flagged `is_system`.  Bump SEED_VERSION whenever a
template changes so existing deployments re-synchronise on next seed.
"""

SEED_VERSION = 1

SYSTEM_ROLES: list[dict] = [
    {
        "name": "admin",
        "display_name": "Administrator",
        "description": "Full access to every part of the system",
        "permissions": ["*"],
    },
    {
        "name": "store_manager",
        "display_name": "Store Manager",
        "description": "Runs the store: sales, stock, customers and staff overview",
        "permissions": [
            "dashboard.access", "reports.*", "pos.*", "sales.*", "returns.*",
            "inventory.*", "products.*", "customers.*",
            "employees.view", "permissions.view", "roles.view",
        ],
    },
    {
        "name": "cashier",
        "display_name": "Cashier",
        "description": "Till operation, payments and customer lookup",
        "permissions": [
            "dashboard.access", "pos.*",
            "sales.view", "sales.create", "returns.view", "returns.create",
            "customers.view", "customers.create", "customers.update",
            "products.view",
        ],
    },
    {
        "name": "sales_agent",
        "display_name": "Sales Agent",
        "description": "Selling and customer care",
        "permissions": [
            "dashboard.access", "pos.access", "sales.*", "customers.*",
            "products.view", "inventory.view", "warranty.*",
        ],
    },
    {
        "name": "inventory_clerk",
        "display_name": "Inventory Clerk",
        "description": "Stock, products, categories and suppliers",
        "permissions": [
            "dashboard.access", "inventory.*", "products.*", "categories.*",
            "suppliers.*", "warranty.view",
        ],
    },
    {
        "name": "affiliate",
        "display_name": "Affiliate",
        "description": "Basic selling rights for partners",
        "permissions": [
            "dashboard.access", "pos.access", "pos.view",
            "sales.view", "sales.create",
            "customers.view", "customers.create", "products.view",
        ],
    },
]
