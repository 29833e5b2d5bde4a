"""Side effects for newly seen students: credentials and welcome email."""
