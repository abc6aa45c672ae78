"""Huddle backend application."""
