"""Configuration loading."""

from powerlend.policy.resolver import PolicyResolver

__all__ = ["PolicyResolver"]
