"""Bookings app package.

This app owns the booking ledger: holds with a TTL, confirmed bookings
and their per-resource allocations. It resolves bookable start times
for services and bundles and runs the hold/confirm protocol, with every
write re-validated inside a serializable transaction that locks the
resources involved.
"""
