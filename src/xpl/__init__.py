"""Challenge progress and XP ledger service."""
