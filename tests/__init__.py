"""
Test suite for sqlsteward.

This package contains unit tests for all sqlsteward components. Database
access is mocked, no PostgreSQL server is needed.
"""
