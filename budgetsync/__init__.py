"""
Budget Sync - Source Package

Client-side synchronization core for budgets and expenses shared
within a group.

DESIGN PRINCIPLES:
1. Local state is a mirror, the remote store is the authority
2. Show the user's change immediately, undo it exactly on failure
3. Never hold two copies of the same expense
4. Reads retry, writes fail loudly
5. Remote store and extraction service are swappable
"""

__version__ = "1.0.0"
__author__ = "Budget Sync Team"
