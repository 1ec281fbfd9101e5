"""
Documents module.

Scope:
- Versioned document store (one version sequence per project/category/file name)
- Review workflow (pending_review / approved / rejected) gated by category checklists
- Plain-text cover letter generation
"""
