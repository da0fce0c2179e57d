"""Request helpers and the standard API error envelope."""
