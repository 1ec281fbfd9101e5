"""
Projects module.

Scope:
- Project CRUD with permit number assignment
- Access checks (specialists, creators, project stakeholders)
- Transactional cascading delete of every project-owned row
- Activity timeline reader
"""
