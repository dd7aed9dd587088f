"""Reconciliation of the local firmware directory against the remote manifest."""
