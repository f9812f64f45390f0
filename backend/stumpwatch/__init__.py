"""Stumpwatch: crowd reports and change requests for street speech events."""
