"""Pure domain types: clock, request context, and service DTOs."""
