"""MentaCare admin backend: patients, therapists, sessions and admin accounts."""
