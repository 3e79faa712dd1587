"""In-memory retail operations core: scoped users, roles, teams, participants, returns, register closings and KPI reports."""

__version__ = "0.1.0"