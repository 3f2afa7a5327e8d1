# Services package init
"""
Supply Tracker Backend: Services Layer
========================================

What:  Business rules between the routes (HTTP) and the database (persistence).
How:   Each service is a stateless singleton whose methods take the request's
       AsyncSession and, where scoping applies, the caller's Identity.

Service Inventory:
    - access_guard:       credential → Identity, the facility ScopePolicy
    - auth_service:       registration, login, passwords, user admin
    - facility_service:   facility directory with the deletion guard
    - supply_service:     supply catalog, xlsx import/template, range retirement
    - patient_service:    facility-scoped patient registry, xlsx import
    - usage_ledger:       idempotent day-of-month usage upserts
    - reporter:           dashboard/itemized aggregation with degraded fallback
    - statistics_service: admin counts
    - spreadsheet:        openpyxl read/build helpers
"""
