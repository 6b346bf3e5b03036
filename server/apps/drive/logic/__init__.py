"""Business logic layer for drive app.

This package contains all business logic for the drive:
- Folder tree maintenance (ancestor index, hierarchy rules, mutations)
- Upload sessions and staging plans
- File lifecycle: upload completion, trash, restore, purge

All business logic should be implemented here, separate from
models (data layer) and infrastructure (external systems).
"""
