"""Cross-cutting primitives: time source and per-restaurant serialization."""
