"""Lockstep command-line interface."""
