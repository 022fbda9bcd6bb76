"""Outbound integrations (Pipedrive CRM)."""
