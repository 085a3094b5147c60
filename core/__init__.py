"""core/ -- Kernel: settings, domain dataclasses, error taxonomy, schema and storage.

Layer rule: core/ has no reverse dependencies. It never imports from auth/,
audit/ or api/.
"""
