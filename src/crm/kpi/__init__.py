"""Salesperson KPI progress tracking."""
