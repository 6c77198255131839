"""
Reconciler - subscription state reconciliation and background credential imports.
"""

__version__ = "0.1.0"
