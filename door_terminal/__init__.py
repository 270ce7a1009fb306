"""Venue-door terminal: PIN gate, CI autocomplete and guest check-in."""
