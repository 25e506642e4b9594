"""
Phase 8: Comprehensive pytest test suite for FanForge backend.

Test categories:
- Unit tests: Service layer with mocked external dependencies
- Integration tests: Full FastAPI app with in-memory SQLite
- Edge case tests: Idempotency, expiry, error conditions
"""
