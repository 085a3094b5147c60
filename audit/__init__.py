"""audit/ -- Append-only change trail (logger) and its query side (store).

Layer rule: audit/ imports from core/ only. api/ imports from audit/.
"""
