"""Fakes standing in for Playwright objects and time."""
