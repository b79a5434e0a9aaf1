"""
Agreements app configuration.

This app provides the milestone escrow lifecycle engine:
- Agreement and milestone state machines
- Append-only escrow ledger
- Lifecycle service and REST API
"""

from django.apps import AppConfig


class AgreementsConfig(AppConfig):
    """Configuration for the agreements application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "agreements"
    verbose_name = "Agreements"
