"""Domain layer: coordinates, segments, the manifest model and replay rules."""
