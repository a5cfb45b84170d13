"""QuotaGate: request admission and daily usage budgets."""
