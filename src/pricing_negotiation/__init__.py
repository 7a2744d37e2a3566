"""Procedure pricing negotiation lifecycle engine."""
