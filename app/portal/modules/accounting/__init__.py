"""
Accounting (admin only).

- Transactions: income/expense ledger with approval and soft cancellation
- Invoices: draft -> issued -> paid/partially_paid/overdue/cancelled, totals recomputed on every flush
- Membership fees: one per (user, year, month), batch-generated for active affiliates
"""
