"""Stripe checkout sessions, webhook reconciliation and post-payment registration."""
