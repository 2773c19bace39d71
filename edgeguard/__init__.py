"""EdgeGuard edge admission filter."""
