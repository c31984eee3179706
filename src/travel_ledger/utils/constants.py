"""Application-wide constants."""

from decimal import Decimal

# Currency units per kilometer driven
MILEAGE_RATE = Decimal("1.09")

# Local store collections
IDENTITY_COLLECTION = "identity"
TRIPS_COLLECTION = "trips"
EXPENSES_COLLECTION = "expenses"

# Singleton key of the identity record
IDENTITY_KEY = "user"

# Identity strings are 11 digits (CPF-like)
IDENTITY_DIGITS = 11

# Per-record sync markers
SYNC_SYNCED = "synced"
SYNC_PENDING_PUSH = "pending_push"
SYNC_CONFLICT = "conflict"

# Monetary sub-amounts of an expense, in display order
AMOUNT_FIELDS = [
    "breakfast_value",
    "lunch_value",
    "dinner_value",
    "transport_value",
    "parking_value",
    "other_value",
]
MEAL_FIELDS = ["breakfast_value", "lunch_value", "dinner_value"]
