"""Plan catalog and subscription lifecycle services."""
