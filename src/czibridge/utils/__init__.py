"""Shared utilities for czibridge."""
