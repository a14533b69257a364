"""Shared utilities: configuration, logging, errors, normalization and crypto."""
