"""Behavior selection and conversation flow engine for a wellness companion."""
