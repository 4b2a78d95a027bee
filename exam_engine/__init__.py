"""Timed exam session engine: countdown, answers, scoring and submission."""
