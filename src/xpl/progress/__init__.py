"""Challenge completion, XP ledger and derived progress (streaks, ranks)."""
