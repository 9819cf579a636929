"""REST API for storefront payment reconciliation."""
