"""Domain services: tenancy, audit, history and derived fields."""
