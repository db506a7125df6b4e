"""
Ledger Migration

A batched migration engine for moving accounting data from QuickBooks
Online into a target ledger database.

Supports:
- Paged extraction over the QuickBooks MCP server or local export files
- Data-driven field maps, type maps and configs with built-in fallbacks
- Cross-entity reference resolution with an idempotent identity ledger
- Within-batch and pre-existing duplicate detection
- Parent/child creation for invoices, bills, payments and journal entries
- Batch planning, graceful degradation and advisory count validation
"""

__version__ = "0.1.0"
