"""ShieldLedger HTTP adapter."""
