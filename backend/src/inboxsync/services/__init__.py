"""Inbox services and external API adapters."""
