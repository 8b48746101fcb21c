"""Business services: reconciliation, lifecycle, access, checkout, side effects."""
