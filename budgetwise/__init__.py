"""
BudgetWise - Backup, Restore and Security Services

The settings-side services of a personal budgeting app:
backups of a user's remote records, destructive restores,
the security policy consulted before sensitive actions,
and the locally stored login credentials.

DESIGN PRINCIPLES:
1. Restore is always an explicit, confirmed overwrite
2. Auth gating fails closed, display masking fails open
3. Remote errors never crash the caller
4. Every backup and restore is auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "BudgetWise Team"
