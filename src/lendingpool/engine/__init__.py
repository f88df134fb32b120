"""Accounting engines of the lending pool."""
