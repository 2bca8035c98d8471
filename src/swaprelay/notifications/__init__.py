"""Operator notifications."""
