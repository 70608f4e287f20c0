"""Host metrics sampler with per-interval rate normalization and InfluxDB output."""

__version__ = "0.5.1"
