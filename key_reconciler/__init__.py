"""Reconcile i18n key catalogs against code usage and fill missing translations."""

__version__ = "0.1.0"
