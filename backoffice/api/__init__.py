"""HTTP surface for plan and subscription operators."""
