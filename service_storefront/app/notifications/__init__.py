"""Outbound customer notifications."""

from .email import EmailSender

__all__ = ["EmailSender"]
