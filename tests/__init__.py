"""
FlowTune Playback Test Suite

Tests for:
- Quality tiers, preview caps and stream URLs
- Session state machine and session store
- Royalty ledger splits, halting and rollback
- Playback service flows and expiry
- Concurrent endings and sweeps
- HTTP API endpoints
"""
