"""Membership registry and invitations."""
