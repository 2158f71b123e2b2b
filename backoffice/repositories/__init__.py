"""Data access for plans, restaurants, temporary upgrades and subscription events."""
