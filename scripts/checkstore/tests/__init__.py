"""Test suite for prchecklist-store core repositories.

This package contains tests for the records, codec and both core repository
backends, including cross-backend compliance and concurrency tests.
"""
