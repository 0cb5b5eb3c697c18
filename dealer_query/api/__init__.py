"""HTTP API for the dealer query assistant."""
