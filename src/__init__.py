"""POS snapshot export/import pipeline."""
