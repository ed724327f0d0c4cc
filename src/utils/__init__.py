"""Utilities package for the POS snapshot pipeline."""
