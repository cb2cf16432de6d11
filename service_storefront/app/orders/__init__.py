"""Orders and card payment confirmation."""
