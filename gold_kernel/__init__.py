"""
Gold Kernel - ownership and cost-basis ledger.

Tracks, per (item, branch, supplier) lot:
- Owned weight and quantity
- Cost basis and weighted-average unit cost
- Paid and owed amounts
- An append-only movement history that replays to the lot balances
"""

__version__ = "0.1.0"
