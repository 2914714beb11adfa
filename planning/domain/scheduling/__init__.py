"""
Scheduling Domain

Detects conflicts in an agent's bookings: overlaps, bookings outside
availability windows, missing travel time, daily and weekly hour caps and
missing breaks. Detection is read-only and returns conflicts as values.

Structure:
```
planning/domain/scheduling/
├── __init__.py
├── schemas.py              # Conflict, report and validation models
├── repository.py           # Booking, availability and agent queries
├── time_calculator.py      # Interval overlap and calendar bucketing
├── geo.py                  # Haversine distance and travel-time estimators
├── availability_service.py # Recurring windows and free slots
├── conflict_detector.py    # Rule checks, schedule validation, reports
└── report_service.py       # Parallel reports across agents
```
"""
