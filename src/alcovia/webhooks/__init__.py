"""Inbound webhooks from external workflows."""
