"""
RegWatch Test Suite
===================

Test organization:
- tests/services/alert_ingestion/ - pipeline, stores and HTTP surface

Run tests:
    pytest                                      # All tests
    pytest tests/services/alert_ingestion -k dedup
"""
