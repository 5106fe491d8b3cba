"""Personalized digest engine."""
