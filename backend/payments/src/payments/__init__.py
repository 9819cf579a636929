"""Payment reconciliation domain for the storefront backend."""
