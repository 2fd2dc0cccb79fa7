"""
Scheduling Domain

Appointment scheduling and assignment engine: turns a booking request
(service, requested time, optional employee) into a committed booking while
respecting per-slot capacity, business hours, buffer times and employee
workload, and ranks alternative slots when the exact request cannot be met.

Structure:
```
domain/scheduling/
├── slots.py            # Candidate start times for one day
├── availability.py     # Slot capacity and employee availability
├── assigner.py         # Request → committed booking
├── alternatives.py     # Ranked fallback slots
├── state_machine.py    # Booking status transitions and their side effects
├── store.py            # Transactions, slot locks, conflict retry
├── repository.py       # Database queries
├── service.py          # Operations used by the router
└── router.py           # /bookings endpoints
```

Concurrency: every capacity check that precedes a write runs under
``BookingStore.run_locked`` (PostgreSQL advisory locks, process-local locks
elsewhere), so concurrent requests for the last unit of capacity cannot both
succeed.
"""
