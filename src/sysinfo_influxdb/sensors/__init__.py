"""Samplers: one reader per metric family, each producing one table per call."""
