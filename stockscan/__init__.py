"""
==============================================================================
stockscan - Scan Capture, Code Resolution & Inventory Transactions
==============================================================================

One reusable scanning core shared by the warehouse scanner, the
point-of-sale scanner and the payment QR scanner.

==============================================================================
"""

__version__ = "1.0.0"
