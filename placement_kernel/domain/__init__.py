"""Pure domain layer: lifecycle state machine, cancellation types, refund math."""
