"""Stores, collaborator clients and supporting services."""
