"""Test suite for the Flowstore framework.

This package contains unit tests for the store, the task engine, the action
context combinators and the helpers. Each test owns its store, file logging
is disabled unless a test is about logging, and timing tests use short real
sleeps.
"""
