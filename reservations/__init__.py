"""Restaurant reservations: booking form backend, live admin dashboard, webhook relay."""
