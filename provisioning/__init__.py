"""Transactional user and organization provisioning."""

__version__ = "0.1.0"
