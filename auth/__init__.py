"""auth/ -- Authentication and authorization package for the book catalog.

Layer rule: auth/ imports stdlib, third-party libraries, and core/ only.
It does NOT import from api/ or client/.
api/ imports from auth/, not the other way around.
"""
