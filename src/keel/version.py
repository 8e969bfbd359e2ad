"""Stores the version of keel."""

version = "0.3.0"
