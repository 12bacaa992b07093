#!/usr/bin/env python3
"""Script to add the composite indexes behind availability and late-booking queries."""
from sqlalchemy import create_engine, text

from common.config import get_settings

INDEXES = (
    # Conflict lookup: bookings on one product overlapping a range.
    "CREATE INDEX IF NOT EXISTS idx_bookings_product_range ON bookings (product_id, start_date, end_date);",
    # Late report: active bookings past their end date.
    "CREATE INDEX IF NOT EXISTS idx_bookings_status_end ON bookings (status, end_date);",
    "CREATE INDEX IF NOT EXISTS idx_bookings_customer_id ON bookings (customer_id);",
    "CREATE INDEX IF NOT EXISTS idx_product_pricing_lookup ON product_pricing (product_id, duration_type, is_active);",
    "CREATE INDEX IF NOT EXISTS idx_products_owner_id ON products (owner_id);",
    "CREATE INDEX IF NOT EXISTS idx_products_location ON products (location);",
)


def add_indexes(database_url: str | None = None) -> None:
    engine = create_engine(database_url or get_settings().database_url)
    with engine.begin() as conn:
        for statement in INDEXES:
            conn.execute(text(statement))
    print("Indexes added successfully.")


if __name__ == "__main__":
    add_indexes()
