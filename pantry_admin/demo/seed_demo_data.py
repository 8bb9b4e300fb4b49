# pantry_admin/demo/seed_demo_data.py

from pantry_admin.storage.db import DEFAULT_DB_PATH
from pantry_admin.storage.models import Record
from pantry_admin.storage.repository import initialize_schema, insert_records

DEMO_RECORDS = [
    Record("userSettings", "user-ann", {"userId": "user-ann", "email": "ann@example.com", "username": "ann"}),
    Record("userSettings", "user-bo", {"userId": "user-bo", "reminderDays": 7}),
    Record("foodItems", "food-1", {"userId": "user-ann", "name": "Milk"}),
    Record("foodItems", "food-2", {"userId": "user-ann", "name": "Eggs"}),
    Record("foodItems", "food-3", {"userId": "user-cy", "name": "Bread"}),
    Record("shoppingLists", "list-1", {"userId": "user-bo", "name": "Weekly"}),
    Record("shoppingList", "entry-1", {"userId": "user-bo", "listId": "list-1", "name": "Apples"}),
    Record("userItems", "item-1", {"userId": "user-cy", "name": "Oat milk"}),
    Record("mealPlans", "plan-1", {"userId": "user-ann", "mealType": "dinner"}),
    Record("aiUsage", "usage-1", {
        "userId": "user-ann", "feature": "label_scanning", "model": "gpt-4o-mini",
        "promptTokens": 1200, "completionTokens": 300,
    }),
    Record("aiUsage", "usage-2", {
        "userId": "user-ann", "feature": "label_scanning",
        "promptTokens": 800, "completionTokens": 200,
    }),
    Record("aiUsage", "usage-3", {
        "userId": "user-cy", "feature": "recipe_import",
        "promptTokens": 4000, "completionTokens": 1000,
    }),
]


def seed_demo_data(db_path: str = DEFAULT_DB_PATH) -> int:
    """Insert the demo records, returning how many were written."""
    initialize_schema(db_path)
    insert_records(DEMO_RECORDS, db_path)
    return len(DEMO_RECORDS)


if __name__ == "__main__":
    count = seed_demo_data()
    print(f"Inserted {count} demo records")
