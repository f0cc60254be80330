"""
Test suite for the Site Explorer.

Provides tests for all modules:
- Unit tests for individual components
- Engine tests driving the decision loop over an in-memory browser
- Fixtures for common test data
"""
