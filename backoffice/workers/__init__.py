"""Long-running background workers."""
