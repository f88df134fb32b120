"""Tabular and JSON exports of pool state."""
