"""API routers, one per ledger component."""
