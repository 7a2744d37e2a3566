"""Retry policies for storage lock contention and outbound notification calls."""

from pricing_negotiation.resilience.retry import resilient_api_call, retry_on_lock_contention

__all__ = ["resilient_api_call", "retry_on_lock_contention"]
