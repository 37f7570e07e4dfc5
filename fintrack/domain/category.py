"""
Default main categories and category set seeded for every new owner.
"""

DEFAULT_MAIN_CATEGORIES = [
    {"name": "Needs", "icon": "priority-high"},
    {"name": "Wants", "icon": "favorite"},
    {"name": "Savings", "icon": "account-balance"},
    {"name": "Income", "icon": "payments"},
]

MAIN_CATEGORY_NAME_MAX = 32

DEFAULT_CATEGORIES = [
    # Needs
    {"name": "Groceries", "main_category": "Needs", "icon": "shopping-cart"},
    {"name": "Rent", "main_category": "Needs", "icon": "home"},
    {"name": "Utilities", "main_category": "Needs", "icon": "power-settings-new"},
    {"name": "Transport", "main_category": "Needs", "icon": "directions-car"},
    {"name": "Healthcare", "main_category": "Needs", "icon": "local-hospital"},
    # Wants
    {"name": "Entertainment", "main_category": "Wants", "icon": "movie"},
    {"name": "Shopping", "main_category": "Wants", "icon": "shopping-bag"},
    {"name": "Dining", "main_category": "Wants", "icon": "restaurant"},
    {"name": "Travel", "main_category": "Wants", "icon": "flight"},
    {"name": "Hobbies", "main_category": "Wants", "icon": "sports-esports"},
    # Savings
    {"name": "Emergency Fund", "main_category": "Savings", "icon": "account-balance"},
    {"name": "Investments", "main_category": "Savings", "icon": "trending-up"},
    {"name": "Retirement", "main_category": "Savings", "icon": "account-balance"},
    {"name": "Goals", "main_category": "Savings", "icon": "flag"},
    {"name": "Education", "main_category": "Savings", "icon": "school"},
    # Income
    {"name": "Salary", "main_category": "Income", "icon": "payments"},
    {"name": "Other Income", "main_category": "Income", "icon": "attach-money"},
]
