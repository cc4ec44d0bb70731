"""Small shared helpers."""

from consul_discovery.utils.duration import parse_duration

__all__ = ["parse_duration"]
