"""Tests - Executor and primitives test suite."""
