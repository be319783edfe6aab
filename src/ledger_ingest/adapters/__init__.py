"""Mailbox adapters."""
