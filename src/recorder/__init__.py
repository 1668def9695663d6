"""Minute velocity recorder -- per-minute delta/velocity logging for price and EEG streams."""
