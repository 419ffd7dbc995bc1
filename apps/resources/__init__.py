"""Resources app package.

Staff members, rooms and equipment that bookings reserve, together with
their weekly working hours and time-off blocks. The calendar domain turns
those into the slot grid and duty windows of a day.
"""
