"""Natural language reporting queries for dealership sales, inventory and warranty data."""
