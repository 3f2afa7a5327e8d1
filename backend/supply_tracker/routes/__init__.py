# Routes package init
"""
Supply Tracker Backend: API Routes Package
============================================

What:  HTTP route handlers, one module per resource, all under /api.

Route Inventory:
    - auth.py:        /api/auth/register, login, verify, change-password
    - users.py:       /api/users (admin)
    - facilities.py:  /api/facilities
    - supplies.py:    /api/supplies, import, template, retire-range
    - patients.py:    /api/patients, import
    - usage.py:       POST /api/usage, GET /api/usage/{patient_id}
    - reports.py:     /api/reports/dashboard, itemized, overview
    - statistics.py:  /api/statistics (admin)
    - health.py:      /api/health

Design Principle:
    Routes are thin: read the request, resolve the identity, call a service,
    shape the response. Business rules live in services.
"""
