"""
Replacements Domain

Workflow for handing a booking to a substitute agent: request, candidate
search and ranking, proposal, acceptance, decline and cancellation. One
active (pending or accepted) request per booking at most.

Structure:
```
planning/domain/replacements/
├── __init__.py
├── schemas.py        # Candidate scores, eligibility checks, stats
├── repository.py     # Replacement request store
├── state_machine.py  # Pure transition planning
└── service.py        # Search, ranking, transitions and notifications
```
"""
