"""Live sync, gap detection and backfill."""
