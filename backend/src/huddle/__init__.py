"""Huddle group-chat relay."""
