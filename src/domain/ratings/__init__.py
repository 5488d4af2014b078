"""Rating-period domain modules."""
