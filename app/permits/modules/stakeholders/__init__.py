"""
Stakeholders module.

Scope:
- Project membership with stakeholder roles and assigned document categories
- Task assignment, progress and completion
"""
