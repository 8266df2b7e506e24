"""Service layer: booking transactions, credit ledger, refunds and their collaborators."""
