"""Restaurant catalog consistency and bulk reconciliation engine."""
