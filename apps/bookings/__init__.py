"""Bookings app package.

The scheduling core: box availability, blocked ranges, the booking
status engine and the extension resolver that moves conflicting future
bookings to equivalent boxes. Overlap is prevented by locking box rows
inside database transactions.
"""
